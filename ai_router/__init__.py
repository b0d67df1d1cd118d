"""AI request routing and fallback engine."""

__version__ = "0.1.0"
