"""Core runtime helpers (logging, telemetry)."""
