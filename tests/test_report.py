"""Tests for scan report rendering."""

from conftest import make_analysis
from smart_trailing.analyzer.report import REPORT_COLUMNS, analyses_to_frame


def test_sorted_by_confidence():
    analyses = [
        make_analysis("AUSDT", 40),
        make_analysis("BUSDT", 90),
        make_analysis("CUSDT", 75),
    ]

    df = analyses_to_frame(analyses)

    assert list(df["symbol"]) == ["BUSDT", "CUSDT", "AUSDT"]
    assert list(df["good"]) == [True, True, False]
    assert list(df.columns) == REPORT_COLUMNS


def test_ties_keep_scan_order():
    analyses = [make_analysis(s, 80) for s in ("XUSDT", "YUSDT", "ZUSDT")]
    assert list(analyses_to_frame(analyses)["symbol"]) == ["XUSDT", "YUSDT", "ZUSDT"]


def test_row_values():
    df = analyses_to_frame([make_analysis("BTCUSDT", 85, price=50000.0)])
    row = df.iloc[0]
    assert row["price"] == 50000.0
    assert row["momentum"] == "up"
    assert row["reasons"] == "test"


def test_empty():
    df = analyses_to_frame([])
    assert df.empty
    assert list(df.columns) == REPORT_COLUMNS
