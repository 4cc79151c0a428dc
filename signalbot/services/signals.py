"""
Signal Synthesizer
==================
Turns an evaluator's (confidence, direction) plus a live price into an
unsaved Signal row with entry / take-profit / stop-loss levels and leverage.
"""
import logging
import math
from typing import Optional

from signalbot.models.database import Signal, Strategy
from signalbot.services.calibration import Calibration
from signalbot.services.errors import InvalidInput
from signalbot.services.strategies.models import (
    LONG, MAX_CONFIDENCE, MIN_CONFIDENCE, SHORT, EvaluationResult,
)

logger = logging.getLogger(__name__)

TP_SCALE = 0.08          # TP distance = confidence% × 8%
SL_PCT = 0.03            # fixed 3% adverse move
LEVERAGE_SLOPE = 0.18    # leverage gained per confidence point above 50


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_price(value: float) -> str:
    return f"{value:.2f}"


def blend_confidence(evaluation: EvaluationResult,
                     strategy: Optional[Strategy] = None,
                     calibration: Optional[Calibration] = None) -> int:
    """Average the evaluator's confidence with the best available prior.

    An owning strategy's win rate takes precedence over the calibration.
    """
    if strategy is not None:
        return round_half_up((evaluation.confidence + strategy.win_rate) / 2)
    if calibration is not None:
        return round_half_up((evaluation.confidence + calibration.win_rate_for(evaluation)) / 2)
    return evaluation.confidence


def calculate_levels(entry: float, direction: str, confidence: int) -> tuple:
    """Return ``(tp, sl)`` for an entry price."""
    tp_move = confidence / 100 * TP_SCALE
    if direction == LONG:
        return entry * (1 + tp_move), entry * (1 - SL_PCT)
    return entry * (1 - tp_move), entry * (1 + SL_PCT)


def calculate_leverage(confidence: int, max_leverage: int,
                       strategy: Optional[Strategy] = None) -> int:
    """Map confidence onto a leverage multiplier within ``[1, max_leverage]``.

    Without a strategy the flat global slope applies. With one, the
    confidence position inside [55, 80] is mapped onto the strategy's own
    min/max leverage band.
    """
    max_leverage = max(1, int(max_leverage))
    if strategy is None:
        leverage = round_half_up(1 + (confidence - 50) * LEVERAGE_SLOPE)
        return max(1, min(max_leverage, leverage))

    lo = max(1, strategy.min_leverage or 1)
    hi = max(lo, strategy.max_leverage or lo)
    ratio = (confidence - MIN_CONFIDENCE) / (MAX_CONFIDENCE - MIN_CONFIDENCE)
    ratio = max(0.0, min(1.0, ratio))
    leverage = round_half_up(lo + ratio * (hi - lo))
    leverage = max(lo, min(hi, leverage))
    return max(1, min(max_leverage, leverage))


def synthesize(
    evaluation: EvaluationResult,
    live_price: float,
    *,
    user_id: str,
    pair: str,
    max_leverage: int,
    strategy: Optional[Strategy] = None,
    calibration: Optional[Calibration] = None,
) -> Signal:
    """Build an active, unsaved Signal. The caller adds and commits it."""
    if live_price is None or live_price <= 0:
        raise InvalidInput(f"Live price must be positive, got {live_price}")
    if evaluation.direction not in (LONG, SHORT):
        raise InvalidInput(f"Unknown direction: {evaluation.direction}")

    confidence = blend_confidence(evaluation, strategy, calibration)
    tp, sl = calculate_levels(live_price, evaluation.direction, confidence)
    leverage = calculate_leverage(confidence, max_leverage, strategy)

    signal = Signal(
        user_id=user_id,
        strategy_id=strategy.id if strategy is not None else None,
        pair=pair,
        type=evaluation.direction,
        entry=format_price(live_price),
        tp=format_price(tp),
        sl=format_price(sl),
        confidence=confidence,
        leverage=leverage,
        status="active",
    )
    logger.info(
        f"Synthesized {evaluation.direction} {pair} @ {signal.entry} "
        f"(TP {signal.tp} / SL {signal.sl}, {confidence}% conf, {leverage}x)"
    )
    return signal
