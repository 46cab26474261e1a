"""Roundtable: turn-based multi-agent conversations over a local generation backend."""

__version__ = "0.1.0"
