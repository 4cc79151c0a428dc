"""
Confidence calibration from historical hit rates.

Walks a daily price history, classifies each day into a setup bucket using
RSI and the EMA12/EMA26 relationship, and checks whether the following week
reached the bucket's target move. The resulting win rates are computed once
at startup and handed to the signal synthesizer explicitly.
"""
import logging
from dataclasses import asdict, dataclass
from typing import Dict, List

from signalbot.services.strategies.indicators import Indicators
from signalbot.services.strategies.models import LONG, EvaluationResult

logger = logging.getLogger(__name__)

LOOKAHEAD_DAYS = 7
MIN_HISTORY = 50
FIRST_INDEX = 30


@dataclass(frozen=True)
class Calibration:
    """Observed win rate (percent) per setup bucket."""
    strong_long_win_rate: int = 72
    strong_short_win_rate: int = 71
    mild_long_win_rate: int = 62
    mild_short_win_rate: int = 61
    conflicting_win_rate: int = 55

    def win_rate_for(self, evaluation: EvaluationResult) -> int:
        """Map an evaluation onto the bucket with the same strength and side."""
        is_long = evaluation.direction == LONG
        if evaluation.confidence >= 70:
            return self.strong_long_win_rate if is_long else self.strong_short_win_rate
        if evaluation.confidence >= 60:
            return self.mild_long_win_rate if is_long else self.mild_short_win_rate
        return self.conflicting_win_rate

    def to_dict(self) -> Dict:
        return asdict(self)


DEFAULT_CALIBRATION = Calibration()


def calibrate(prices: List[float]) -> Calibration:
    """Measure bucket win rates over ``prices`` (daily closes, oldest first).

    Buckets with no samples keep their default rate.
    """
    if len(prices) < MIN_HISTORY:
        logger.info(f"Calibration: only {len(prices)} prices, using defaults")
        return DEFAULT_CALIBRATION

    wins = {k: 0 for k in ("strong_long", "strong_short", "mild_long",
                           "mild_short", "conflicting")}
    totals = dict(wins)

    for i in range(FIRST_INDEX, len(prices) - LOOKAHEAD_DAYS):
        history = prices[:i + 1]
        rsi = Indicators.rsi(history)
        ema12 = Indicators.ema(history, 12)
        ema26 = Indicators.ema(history, 26)

        entry = prices[i]
        future = prices[i + 1:i + 1 + LOOKAHEAD_DAYS]
        future_high = max(future)
        future_low = min(future)
        bullish = ema12 > ema26

        if rsi < 30 and bullish:
            bucket, hit = "strong_long", future_high > entry * 1.03
        elif rsi > 70 and not bullish:
            bucket, hit = "strong_short", future_low < entry * 0.97
        elif rsi < 40 and bullish:
            bucket, hit = "mild_long", future_high > entry * 1.02
        elif rsi > 60 and not bullish:
            bucket, hit = "mild_short", future_low < entry * 0.98
        else:
            bucket = "conflicting"
            hit = (future_high > entry * 1.02) if bullish else (future_low < entry * 0.98)

        totals[bucket] += 1
        if hit:
            wins[bucket] += 1

    def _rate(bucket: str, default: int) -> int:
        if totals[bucket] == 0:
            return default
        return int(wins[bucket] / totals[bucket] * 100 + 0.5)

    result = Calibration(
        strong_long_win_rate=_rate("strong_long", DEFAULT_CALIBRATION.strong_long_win_rate),
        strong_short_win_rate=_rate("strong_short", DEFAULT_CALIBRATION.strong_short_win_rate),
        mild_long_win_rate=_rate("mild_long", DEFAULT_CALIBRATION.mild_long_win_rate),
        mild_short_win_rate=_rate("mild_short", DEFAULT_CALIBRATION.mild_short_win_rate),
        conflicting_win_rate=_rate("conflicting", DEFAULT_CALIBRATION.conflicting_win_rate),
    )
    logger.info(f"Calibration over {len(prices)} prices: {result.to_dict()} "
                f"(samples {totals})")
    return result
