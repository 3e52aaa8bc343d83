"""Risk scoring."""

from .engine import RiskEngine, band_for

__all__ = ["RiskEngine", "band_for"]
