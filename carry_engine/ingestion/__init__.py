"""Market data ingestion."""

from .ingestor import IngestResult, MarketDataIngestor

__all__ = ["IngestResult", "MarketDataIngestor"]
