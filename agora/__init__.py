"""Agora -- context-based login trust and community moderation."""

__version__ = "0.1.0"
