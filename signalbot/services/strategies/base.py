"""
Base evaluator class with the shared warm-up guard and confidence clamp.
All concrete evaluators inherit from this.
"""
from typing import Dict, List

from signalbot.services.strategies.indicators import Indicators
from signalbot.services.strategies.models import (
    DEFAULT_RESULT, EVALUATORS, MAX_CONFIDENCE, MIN_CONFIDENCE,
    EvaluationResult, EvaluatorConfig,
)


class BaseEvaluator:
    """Abstract base for all evaluators.

    Subclasses implement ``_decide`` over precomputed indicators; ``evaluate``
    handles short input and clamping so every variant honours the same
    contract.
    """

    key: str = ""

    def __init__(self, key: str = None):
        self.cfg: EvaluatorConfig = EVALUATORS[key or self.key]

    def evaluate(self, prices: List[float]) -> EvaluationResult:
        if len(prices) < self.cfg.min_samples:
            return DEFAULT_RESULT
        confidence, direction = self._decide(Indicators.compute_all(prices))
        return EvaluationResult(
            confidence=int(max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, confidence))),
            direction=direction,
        )

    def _decide(self, ind: Dict) -> tuple:
        """Return ``(confidence, direction)`` before clamping."""
        raise NotImplementedError
