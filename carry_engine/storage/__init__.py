"""Storage layer: async repository over the carry store tables."""

from .repository import CarryRepository

__all__ = ["CarryRepository"]
