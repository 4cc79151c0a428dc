"""
Strategy Engine — evaluator registry lookup and dispatch.

Routes evaluation to the evaluator registered under a name.
"""
import logging
from typing import Dict, List

from signalbot.services.errors import InvalidInput
from signalbot.services.strategies.base import BaseEvaluator
from signalbot.services.strategies.models import EVALUATORS, EvaluationResult
from signalbot.services.strategies.trend_following import TrendFollowingEvaluator
from signalbot.services.strategies.mean_reversion import MeanReversionEvaluator
from signalbot.services.strategies.high_precision import HighPrecisionEvaluator

logger = logging.getLogger(__name__)


class StrategyEngine:
    """Holds one instance of every registered evaluator."""

    def __init__(self):
        self._instances: Dict[str, BaseEvaluator] = {
            "trend_following": TrendFollowingEvaluator(),
            "mean_reversion": MeanReversionEvaluator(),
            "high_precision": HighPrecisionEvaluator(),
            "high_precision_contrarian": HighPrecisionEvaluator("high_precision_contrarian"),
        }
        missing = set(EVALUATORS) - set(self._instances)
        if missing:
            raise RuntimeError(f"Evaluators registered without an implementation: {missing}")

    def get(self, key: str) -> BaseEvaluator:
        evaluator = self._instances.get(key)
        if evaluator is None:
            raise InvalidInput(f"Unknown evaluator: {key}")
        return evaluator

    def evaluate(self, key: str, prices: List[float]) -> EvaluationResult:
        result = self.get(key).evaluate(prices)
        logger.debug(f"Evaluator {key}: {result.direction} @ {result.confidence}% "
                     f"({len(prices)} prices)")
        return result

    @staticmethod
    def describe() -> List[Dict]:
        return [
            {
                "key": cfg.key,
                "name": cfg.name,
                "description": cfg.description,
                "style": cfg.style,
                "min_samples": cfg.min_samples,
                "contrarian": cfg.contrarian,
            }
            for cfg in EVALUATORS.values()
        ]
