"""Multi-source job discovery."""

__version__ = "0.1.0"
