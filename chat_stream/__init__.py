"""Streaming chat turn service."""
__version__ = "0.3.0"
