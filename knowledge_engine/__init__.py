"""Knowledge ingestion and retrieval engine: crawl, chunk, embed, store, retrieve."""

__version__ = "0.1.0"
