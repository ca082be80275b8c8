"""Activity sync service: OAuth connection lifecycle plus GitHub, Twitter/X and LinkedIn activity ingestion."""

__version__ = "0.1.0"
