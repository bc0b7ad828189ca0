"""External market-data providers."""
