"""Predict video encode quality, size and time from encoded and scored samples."""

__version__ = "0.1.0"