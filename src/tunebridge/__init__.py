"""tunebridge - cross-platform track/playlist conversion and change detection."""

__version__ = "0.1.0"
