"""Analyzer module - indicators, opportunity scoring and scan reports."""

from .indicators import calc_momentum, calc_rsi, closes_of
from .report import analyses_to_frame
from .scorer import OpportunityScorer

__all__ = [
    "calc_momentum",
    "calc_rsi",
    "closes_of",
    "analyses_to_frame",
    "OpportunityScorer",
]
