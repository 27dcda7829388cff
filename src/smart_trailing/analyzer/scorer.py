"""Opportunity scorer for trailing-stop entries.

Additive point system over four independent signals. Each signal either
contributes its full weight or nothing.
"""

import logging
from typing import Optional, Sequence

from ..core.config import ScoringPolicy, Settings
from ..core.models import Candle, CoinAnalysis, Momentum, OpportunityScore, Ticker
from .indicators import calc_momentum, calc_rsi, closes_of

logger = logging.getLogger(__name__)


class OpportunityScorer:
    """Scores symbols on 24h change, volume, RSI and momentum.

    Default weights:
    - 24h change above min_price_change: +30
    - Quote volume above min_volume: +20
    - RSI below rsi_threshold (not overbought): +30
    - Momentum up or strong_up: +20

    A symbol is good for trailing at confidence >= 70.
    """

    def __init__(
        self,
        policy: Optional[ScoringPolicy] = None,
        rsi_period: int = 14,
        momentum_window: int = 10,
    ):
        self.policy = policy or ScoringPolicy()
        self.rsi_period = rsi_period
        self.momentum_window = momentum_window

    def score(
        self,
        price_change_24h: float,
        volume_24h: float,
        rsi: float,
        momentum: Momentum,
        settings: Settings,
    ) -> OpportunityScore:
        """Score one symbol against the current settings.

        Args:
            price_change_24h: 24h price change percentage
            volume_24h: 24h volume in quote currency
            rsi: RSI value (0-100)
            momentum: Short-window momentum classification
            settings: Thresholds to compare against

        Returns:
            OpportunityScore with clamped confidence and ordered reasons
        """
        policy = self.policy
        confidence = 0
        reasons = []

        if price_change_24h > settings.min_price_change:
            confidence += policy.price_change_weight
            reasons.append(f"Price up > {settings.min_price_change:g}%")

        if volume_24h > settings.min_volume:
            confidence += policy.volume_weight
            reasons.append(f"High volume > {settings.min_volume / 1_000_000:g}M")

        if rsi < settings.rsi_threshold:
            confidence += policy.rsi_weight
            reasons.append(f"RSI < {settings.rsi_threshold:g} (not overbought)")

        if momentum.is_bullish:
            confidence += policy.momentum_weight
            reasons.append("Strong upward momentum")

        confidence = min(100, max(0, confidence))

        return OpportunityScore(
            is_good_for_trailing=confidence >= policy.min_confidence,
            confidence=confidence,
            reasons=tuple(reasons),
        )

    def analyze(
        self,
        ticker: Ticker,
        candles: Sequence[Candle],
        settings: Settings,
    ) -> CoinAnalysis:
        """Compute indicators from candles and score the ticker."""
        closes = closes_of(candles)
        rsi = calc_rsi(closes, self.rsi_period)
        momentum = calc_momentum(closes, self.momentum_window)

        score = self.score(
            ticker.change_24h,
            ticker.quote_volume_24h,
            rsi,
            momentum,
            settings,
        )

        logger.debug(
            f"   🔬 {ticker.symbol}: change={ticker.change_24h:+.2f}% "
            f"vol={ticker.quote_volume_24h:,.0f} rsi={rsi:.1f} momentum={momentum.value} "
            f"-> confidence={score.confidence}"
        )

        return CoinAnalysis(
            symbol=ticker.symbol,
            current_price=ticker.last_price,
            price_change_24h=ticker.change_24h,
            volume_24h=ticker.quote_volume_24h,
            momentum=momentum,
            rsi=rsi,
            score=score,
        )
