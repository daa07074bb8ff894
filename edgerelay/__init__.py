"""Relay between edge audio devices and the OpenAI Realtime API."""

__version__ = "1.0.0"
