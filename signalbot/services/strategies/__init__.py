"""
Strategies Package — re-exports all public symbols.

External code can do:
    from signalbot.services.strategies import StrategyEngine, Indicators, EVALUATORS, ...
"""
from signalbot.services.strategies.models import (
    EvaluationResult,
    EvaluatorConfig,
    EVALUATORS,
    STRATEGY_PRESETS,
    LONG,
    SHORT,
)
from signalbot.services.strategies.indicators import Indicators
from signalbot.services.strategies.base import BaseEvaluator
from signalbot.services.strategies.engine import StrategyEngine

__all__ = [
    "EvaluationResult",
    "EvaluatorConfig",
    "EVALUATORS",
    "STRATEGY_PRESETS",
    "LONG",
    "SHORT",
    "Indicators",
    "BaseEvaluator",
    "StrategyEngine",
]
