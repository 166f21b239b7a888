"""Video platform processor: media ingestion worker."""

__version__ = "0.1.0"
