"""
Trend Following Evaluator — EMA stack + MACD momentum confirmation.

Identifies the primary trend from EMA 20/50/200 and only commits with
conviction when MACD agrees and RSI is not stretched.
"""
from typing import Dict

from signalbot.services.strategies.base import BaseEvaluator
from signalbot.services.strategies.models import LONG, SHORT


class TrendFollowingEvaluator(BaseEvaluator):

    key = "trend_following"

    def _decide(self, ind: Dict) -> tuple:
        price = ind["current_price"]
        rsi = ind["rsi"]
        macd = ind["macd"]
        ema20, ema50, ema200 = ind["ema_20"], ind["ema_50"], ind["ema_200"]

        above_20 = price > ema20
        stack_20_50 = ema20 > ema50
        stack_50_200 = ema50 > ema200

        macd_bullish = macd["macd"] > macd["signal"] and macd["histogram"] > 0
        macd_bearish = macd["macd"] < macd["signal"] and macd["histogram"] < 0

        # Strong: every EMA aligned and MACD confirms
        if above_20 and stack_20_50 and stack_50_200 and macd_bullish and rsi < 70:
            return 76, LONG
        if above_20 and stack_20_50 and macd_bullish and rsi < 65:
            return 70, LONG
        if above_20 and macd_bullish and 35 < rsi < 70:
            return 62, LONG

        if not above_20 and not stack_20_50 and not stack_50_200 and macd_bearish and rsi > 30:
            return 76, SHORT
        if not above_20 and not stack_20_50 and macd_bearish and rsi > 35:
            return 70, SHORT
        if not above_20 and macd_bearish and 30 < rsi < 65:
            return 62, SHORT

        # Trend intact but no fresh momentum
        if above_20 and stack_20_50:
            return 58, LONG
        if not above_20 and not stack_20_50:
            return 58, SHORT

        # Transition zone
        return 55, (LONG if price > ema50 else SHORT)
