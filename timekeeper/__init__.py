"""Trackside lap timing, race session control and model upload tracking."""

__version__ = "0.3.0"
