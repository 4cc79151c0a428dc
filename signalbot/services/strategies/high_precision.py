"""
High Precision Evaluator — multi-indicator gating.

Scores strongly only when the EMA 9/21/50 stack, MACD, Stochastic, RSI,
ADX trend strength and the momentum proxy all line up. Weaker setups fall
through to RSI extremes and finally to a neutral 55 LONG.

The contrarian variant trades the alignment tiers in the opposite
direction; RSI extremes and the neutral fallback are shared by both.
"""
from typing import Dict

from signalbot.services.strategies.base import BaseEvaluator
from signalbot.services.strategies.models import LONG, SHORT


class HighPrecisionEvaluator(BaseEvaluator):

    key = "high_precision"

    def _decide(self, ind: Dict) -> tuple:
        price = ind["current_price"]
        rsi = ind["rsi"]
        macd = ind["macd"]
        stoch_k = ind["stochastic"]
        adx = ind["adx"]
        momentum = ind["momentum"]
        ema9, ema21, ema50 = ind["ema_9"], ind["ema_21"], ind["ema_50"]

        ema9_above_21 = ema9 > ema21
        ema21_above_50 = ema21 > ema50
        above_50 = price > ema50
        below_50 = price < ema50

        bullish, bearish = self._orient()

        if (ema9_above_21 and ema21_above_50 and above_50
                and macd["macd"] > macd["signal"] and macd["histogram"] > 0
                and stoch_k < 80 and rsi < 75 and adx > 55 and momentum > 60):
            return 75, bullish
        if (ema9_above_21 and ema21_above_50
                and macd["macd"] > macd["signal"]
                and stoch_k < 85 and rsi < 70 and adx > 50):
            return 72, bullish

        if (not ema9_above_21 and not ema21_above_50 and below_50
                and macd["macd"] < macd["signal"] and macd["histogram"] < 0
                and stoch_k > 20 and rsi > 25 and adx > 55 and momentum > 60):
            return 75, bearish
        if (not ema9_above_21 and not ema21_above_50
                and macd["macd"] < macd["signal"]
                and stoch_k > 15 and rsi > 30 and adx > 50):
            return 72, bearish

        if ema9_above_21 and macd["macd"] > macd["signal"] and stoch_k < 70 and rsi < 65:
            return 68, bullish
        if not ema9_above_21 and macd["macd"] < macd["signal"] and stoch_k > 30 and rsi > 35:
            return 67, bearish

        if rsi > 70:
            return 60, SHORT
        if rsi < 30:
            return 60, LONG
        return 55, LONG

    def _orient(self) -> tuple:
        """Directions assigned to bullish and bearish alignment."""
        if self.cfg.contrarian:
            return SHORT, LONG
        return LONG, SHORT
