"""Read-through cache and background refresh scheduler for lending-market data."""

__version__ = "0.1.0"
