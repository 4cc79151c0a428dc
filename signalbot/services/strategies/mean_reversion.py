"""
Mean Reversion Evaluator — MACD + Bollinger Bands + RSI.

Buys MACD-bullish setups while price sits near the lower band and sells
MACD-bearish setups near the upper band. RSI breaks the ties.
"""
from typing import Dict

from signalbot.services.strategies.base import BaseEvaluator
from signalbot.services.strategies.models import LONG, SHORT


class MeanReversionEvaluator(BaseEvaluator):

    key = "mean_reversion"

    def _decide(self, ind: Dict) -> tuple:
        price = ind["current_price"]
        rsi = ind["rsi"]
        macd = ind["macd"]
        bb = ind["bb"]

        macd_bullish = macd["macd"] > macd["signal"] and macd["histogram"] > 0
        macd_bearish = macd["macd"] < macd["signal"] and macd["histogram"] < 0

        # "Near" means within 5% of the band
        near_lower = price <= bb["lower"] * 1.05
        near_upper = price >= bb["upper"] * 0.95

        if macd_bullish and near_lower and rsi < 70:
            return 78, LONG
        if macd_bullish and rsi < 50:
            return 70, LONG
        if macd_bearish and near_upper and rsi > 30:
            return 77, SHORT
        if macd_bearish and rsi > 50:
            return 69, SHORT
        if macd_bullish:
            return 60, LONG
        if macd_bearish:
            return 59, SHORT
        if rsi < 30:
            return 58, LONG
        if rsi > 70:
            return 57, SHORT
        return 55, LONG
