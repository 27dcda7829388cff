"""Tests for the opportunity scorer.

**Feature: smart-trailing**
"""

import pytest
from hypothesis import given, strategies as st, settings as hyp_settings

from smart_trailing.analyzer.scorer import OpportunityScorer
from smart_trailing.core.config import ScoringPolicy, Settings
from smart_trailing.core.models import Candle, Momentum, Ticker


momentum_strategy = st.sampled_from(list(Momentum))
change_strategy = st.floats(min_value=-50.0, max_value=50.0, allow_nan=False)
volume_strategy = st.floats(min_value=0.0, max_value=1e10, allow_nan=False)
rsi_strategy = st.floats(min_value=0.0, max_value=100.0, allow_nan=False)


class TestScore:
    """Additive scoring."""

    def test_all_signals(self):
        """6% change, 2M volume, RSI 40, momentum up -> 100 and good."""
        result = OpportunityScorer().score(6.0, 2_000_000, 40.0, Momentum.UP, Settings())

        assert result.confidence == 100
        assert result.is_good_for_trailing
        assert result.reasons == (
            "Price up > 5%",
            "High volume > 1M",
            "RSI < 70 (not overbought)",
            "Strong upward momentum",
        )

    def test_no_signals(self):
        result = OpportunityScorer().score(1.0, 10.0, 80.0, Momentum.DOWN, Settings())
        assert result.confidence == 0
        assert not result.is_good_for_trailing
        assert result.reasons == ()

    @pytest.mark.parametrize("change,volume,rsi,momentum,expected", [
        (6.0, 0.0, 80.0, Momentum.SIDEWAYS, 30),
        (0.0, 2e6, 80.0, Momentum.SIDEWAYS, 20),
        (0.0, 0.0, 50.0, Momentum.SIDEWAYS, 30),
        (0.0, 0.0, 80.0, Momentum.STRONG_UP, 20),
        (6.0, 0.0, 50.0, Momentum.SIDEWAYS, 60),
        (6.0, 2e6, 50.0, Momentum.DOWN, 80),
    ])
    def test_weights(self, change, volume, rsi, momentum, expected):
        result = OpportunityScorer().score(change, volume, rsi, momentum, Settings())
        assert result.confidence == expected
        assert result.is_good_for_trailing == (expected >= 70)

    def test_thresholds_are_strict(self):
        """Values equal to a threshold earn nothing."""
        result = OpportunityScorer().score(5.0, 1_000_000, 70.0, Momentum.SIDEWAYS, Settings())
        assert result.confidence == 0

    def test_seventy_is_good(self):
        result = OpportunityScorer().score(6.0, 0.0, 50.0, Momentum.UP, Settings())
        assert result.confidence == 80
        result = OpportunityScorer().score(0.0, 2e6, 50.0, Momentum.UP, Settings())
        assert result.confidence == 70
        assert result.is_good_for_trailing

    def test_custom_policy(self):
        policy = ScoringPolicy(price_change_weight=60, volume_weight=60, min_confidence=100)
        result = OpportunityScorer(policy).score(6.0, 2e6, 80.0, Momentum.DOWN, Settings())
        # clamped to 100
        assert result.confidence == 100
        assert result.is_good_for_trailing

    def test_uses_settings_thresholds(self):
        settings = Settings(min_price_change=10.0, min_volume=5_000_000, rsi_threshold=30)
        result = OpportunityScorer().score(6.0, 2e6, 40.0, Momentum.UP, settings)
        assert result.confidence == 20
        assert result.reasons == ("Strong upward momentum",)

    @given(
        change=change_strategy,
        volume=volume_strategy,
        rsi=rsi_strategy,
        momentum=momentum_strategy,
        bump=st.sampled_from(["change", "volume", "rsi", "momentum"]),
    )
    @hyp_settings(max_examples=200)
    def test_confidence_monotonic(self, change, volume, rsi, momentum, bump):
        """**Feature: smart-trailing, Property 5: Confidence monotonicity**

        Pushing one metric past its threshold never lowers confidence.
        """
        settings = Settings()
        scorer = OpportunityScorer()
        before = scorer.score(change, volume, rsi, momentum, settings).confidence

        if bump == "change":
            change = max(change, settings.min_price_change + 1)
        elif bump == "volume":
            volume = max(volume, settings.min_volume + 1)
        elif bump == "rsi":
            rsi = min(rsi, settings.rsi_threshold - 1)
        else:
            momentum = Momentum.STRONG_UP

        after = scorer.score(change, volume, rsi, momentum, settings).confidence
        assert after >= before

    @given(change=change_strategy, volume=volume_strategy, rsi=rsi_strategy, momentum=momentum_strategy)
    @hyp_settings(max_examples=100)
    def test_confidence_bounded(self, change, volume, rsi, momentum):
        result = OpportunityScorer().score(change, volume, rsi, momentum, Settings())
        assert 0 <= result.confidence <= 100
        assert len(result.reasons) <= 4


class TestAnalyze:
    """Scoring from raw market data."""

    def test_analyze_builds_coin_analysis(self):
        closes = [100.0 + i for i in range(30)]
        candles = [Candle(i, c, c, c, c, 1.0) for i, c in enumerate(closes)]
        ticker = Ticker("ETHUSDT", 129.0, 7.5, 3_000_000)

        analysis = OpportunityScorer().analyze(ticker, candles, Settings())

        assert analysis.symbol == "ETHUSDT"
        assert analysis.current_price == 129.0
        assert analysis.price_change_24h == 7.5
        assert analysis.volume_24h == 3_000_000
        assert analysis.rsi == 100.0
        assert analysis.momentum == Momentum.STRONG_UP
        # RSI 100 is overbought, everything else scores
        assert analysis.confidence == 70
        assert analysis.is_good_for_trailing

    def test_analyze_with_no_candles(self):
        analysis = OpportunityScorer().analyze(Ticker("BTCUSDT", 50000.0, 6.0, 2e6), [], Settings())
        assert analysis.rsi == 50.0
        assert analysis.momentum == Momentum.SIDEWAYS
        assert analysis.confidence == 80
