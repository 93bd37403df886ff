"""Share a folder or media library over the local network."""

__version__ = "0.1.0"
