"""Document store: PDF upload, listing, download and deletion over FastAPI."""

__version__ = "1.0.0"
