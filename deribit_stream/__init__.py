"""Deribit order book streaming bridge."""

__version__ = "0.1.0"
