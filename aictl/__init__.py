"""Lifecycle client for synthesized agent code."""

__version__ = "0.1.0"
