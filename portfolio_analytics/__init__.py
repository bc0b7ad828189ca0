"""Portfolio valuation and factor analytics service."""
