"""Isolated-pool lending engine with a liquidation keeper."""

__version__ = "0.1.0"
