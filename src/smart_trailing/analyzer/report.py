"""Tabular scan reports."""

from typing import Sequence

import pandas as pd

from ..core.models import CoinAnalysis

REPORT_COLUMNS = [
    "symbol",
    "price",
    "change_24h",
    "volume_24h",
    "rsi",
    "momentum",
    "confidence",
    "good",
    "reasons",
]


def analyses_to_frame(analyses: Sequence[CoinAnalysis]) -> pd.DataFrame:
    """Render a scan as a DataFrame ranked by confidence (highest first).

    Ties keep scan order.
    """
    rows = [
        {
            "symbol": a.symbol,
            "price": a.current_price,
            "change_24h": a.price_change_24h,
            "volume_24h": a.volume_24h,
            "rsi": round(a.rsi, 2),
            "momentum": a.momentum.value,
            "confidence": a.confidence,
            "good": a.is_good_for_trailing,
            "reasons": "; ".join(a.reasons),
        }
        for a in analyses
    ]
    df = pd.DataFrame(rows, columns=REPORT_COLUMNS)
    if df.empty:
        return df
    return df.sort_values("confidence", ascending=False, kind="stable").reset_index(drop=True)
