"""Cost-of-carry computation engine."""

from .carry_engine import CostOfCarryEngine

__all__ = ["CostOfCarryEngine"]
