"""ReviewFlow - content ingestion and review-workflow engine."""

__version__ = "0.1.0"
