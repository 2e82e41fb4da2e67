"""Activity time tracking with a local HTTP daemon and CSV storage."""

__version__ = "0.1.0"