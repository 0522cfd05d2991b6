"""Sentinel: chat-operated server investigation assistant."""

__version__ = "0.3.0"
