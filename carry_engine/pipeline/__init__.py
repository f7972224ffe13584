"""Live service wiring for ingestion, resolution and computation."""

from .carry_pipeline import CarryPipeline

__all__ = ["CarryPipeline"]
