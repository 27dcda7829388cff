"""Periodic opportunity scan."""

from .scheduler import AnalysisScheduler

__all__ = ["AnalysisScheduler"]
