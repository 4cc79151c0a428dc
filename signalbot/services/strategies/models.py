"""
Data models for the strategy system.
EvaluationResult, EvaluatorConfig, the EVALUATORS registry and the strategy
presets every new account starts with.
"""
from dataclasses import dataclass
from typing import Dict, List

LONG = "LONG"
SHORT = "SHORT"

MIN_CONFIDENCE = 55
MAX_CONFIDENCE = 80


# ── EvaluationResult (output of every evaluator) ────────────────────────────

@dataclass(frozen=True)
class EvaluationResult:
    """Direction plus self-reported confidence (integer percent, 55–80)."""
    confidence: int
    direction: str          # "LONG" or "SHORT"

    def to_dict(self) -> Dict:
        return {"confidence": self.confidence, "trade_type": self.direction}


DEFAULT_RESULT = EvaluationResult(MIN_CONFIDENCE, LONG)


# ── Evaluator Configuration ─────────────────────────────────────────────────

@dataclass(frozen=True)
class EvaluatorConfig:
    key: str
    name: str
    description: str
    style: str              # trend, mean_reversion, confluence
    min_samples: int        # below this the neutral default is returned
    contrarian: bool = False


EVALUATORS: Dict[str, EvaluatorConfig] = {
    "trend_following": EvaluatorConfig(
        key="trend_following",
        name="EMA Trend + MACD",
        description="Primary trend from the EMA 20/50/200 stack, confirmed by "
                    "MACD momentum and an RSI ceiling/floor.",
        style="trend",
        min_samples=30,
    ),
    "mean_reversion": EvaluatorConfig(
        key="mean_reversion",
        name="MACD + Bollinger + RSI",
        description="Buys MACD-bullish setups near the lower Bollinger band, "
                    "sells MACD-bearish setups near the upper band.",
        style="mean_reversion",
        min_samples=30,
    ),
    "high_precision": EvaluatorConfig(
        key="high_precision",
        name="High Precision",
        description="Only scores strongly when EMA 9/21/50, MACD, Stochastic, "
                    "RSI, ADX and momentum all agree.",
        style="confluence",
        min_samples=40,
    ),
    "high_precision_contrarian": EvaluatorConfig(
        key="high_precision_contrarian",
        name="High Precision (Contrarian)",
        description="Same gating as High Precision with every direction "
                    "inverted: fades bullish alignment, buys bearish alignment.",
        style="confluence",
        min_samples=40,
        contrarian=True,
    ),
}


# ── Account strategy presets ────────────────────────────────────────────────

STRATEGY_PRESETS: List[Dict] = [
    {
        "name": "Micro-Scalp v2",
        "description": "High-frequency signals for small price movements. "
                       "Best for volatile markets.",
        "risk": "High",
        "win_rate": 78,
        "avg_profit": 1.2,
        "active": True,
        "profit_factor": 2.1,
        "max_drawdown": 4.5,
        "min_leverage": 3,
        "max_leverage": 10,
    },
    {
        "name": "Trend Master",
        "description": "Follows major 4H market trends. Fewer trades, "
                       "higher reliability.",
        "risk": "Low",
        "win_rate": 85,
        "avg_profit": 3.5,
        "active": True,
        "profit_factor": 3.8,
        "max_drawdown": 1.2,
        "min_leverage": 1,
        "max_leverage": 5,
    },
    {
        "name": "Sentiment AI",
        "description": "Experimental strategy based on social volume and "
                       "news sentiment.",
        "risk": "Med",
        "win_rate": 62,
        "avg_profit": 5.1,
        "active": False,
        "profit_factor": 1.5,
        "max_drawdown": 8.2,
        "min_leverage": 2,
        "max_leverage": 7,
    },
]

RISK_TIERS = ("High", "Med", "Low")
