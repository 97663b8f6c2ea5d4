"""Bracual: queued audio resampling and transcription."""

__version__ = "0.1.0"
