"""Switchboard: scenario routing and provider transformation for chat completions."""

__version__ = "0.3.0"
