"""Task Magic terminal dashboard."""

__version__ = "0.2.0"
