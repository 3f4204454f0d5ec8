"""Duplex Sync - watches coding-agent conversations and syncs them to Duplex."""

__version__ = "0.1.0"
