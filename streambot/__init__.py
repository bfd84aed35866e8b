"""streambot: chat command dispatcher for live streams."""

__version__ = "0.3.0"
