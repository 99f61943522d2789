"""searchbridge — One search and indexing interface over many search engines."""

__version__ = "0.1.0"
