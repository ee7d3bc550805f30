"""PostPulse - keeps a store of popular social posts for a search query."""

__version__ = "0.1.0"
