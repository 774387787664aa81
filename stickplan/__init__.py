"""stickplan - upgrade planning for live system storage devices."""

__version__ = "0.1.0"
