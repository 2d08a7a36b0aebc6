"""BidIntake - bid document ingestion and line item normalization."""

__version__ = "0.1.0"
