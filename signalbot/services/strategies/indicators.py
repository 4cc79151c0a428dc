"""
Technical Indicator Library.
Stateless computations over a single closing-price series, used by all
evaluators. The upstream feed has no OHLCV data, so the close stands in for
high and low wherever a textbook indicator would need them.

None of these functions raise on short or degenerate input; they fall back
to neutral values instead.
"""
import math
from typing import Dict, List


class Indicators:
    """Stateless library of technical indicator computations."""

    # ── RSI ─────────────────────────────────────────────────────────────

    @staticmethod
    def rsi(prices: List[float], period: int = 14) -> float:
        """Simple-average RSI over the last ``period`` price changes.

        Returns 50 when fewer than ``period + 1`` prices are available and
        saturates at 100 when the window holds no losses.
        """
        if len(prices) < period + 1:
            return 50.0
        gains = 0.0
        losses = 0.0
        for i in range(len(prices) - period, len(prices)):
            diff = prices[i] - prices[i - 1]
            if diff > 0:
                gains += diff
            else:
                losses += abs(diff)
        avg_gain = gains / period
        avg_loss = losses / period
        if avg_loss == 0:
            return 100.0
        rs = avg_gain / avg_loss
        return 100 - 100 / (1 + rs)

    # ── EMA ─────────────────────────────────────────────────────────────

    @staticmethod
    def ema(prices: List[float], period: int) -> float:
        """EMA seeded from the SMA of the last ``period`` prices, then blended
        forward over that same window.

        With fewer than ``period`` prices the latest price is returned as-is.
        """
        if not prices:
            return 0.0
        if len(prices) < period:
            return prices[-1]
        value = sum(prices[-period:]) / period
        k = 2.0 / (period + 1)
        for price in prices[len(prices) - period:]:
            value = price * k + value * (1 - k)
        return value

    @staticmethod
    def sma(prices: List[float], period: int) -> float:
        window = prices[-period:]
        if not window:
            return 0.0
        return sum(window) / len(window)

    # ── MACD ────────────────────────────────────────────────────────────

    @staticmethod
    def macd(prices: List[float]) -> Dict[str, float]:
        """EMA12 - EMA26 with an approximate signal line.

        The signal line is a single 9-period blend of the MACD value into the
        mean of the last 9 prices, not an EMA of the MACD history.
        """
        macd_val = Indicators.ema(prices, 12) - Indicators.ema(prices, 26)
        seed = Indicators.sma(prices, 9)
        k = 2.0 / 10
        signal = macd_val * k + seed * (1 - k)
        return {
            "macd": macd_val,
            "signal": signal,
            "histogram": macd_val - signal,
        }

    # ── Bollinger Bands ─────────────────────────────────────────────────

    @staticmethod
    def bollinger_bands(prices: List[float], period: int = 20,
                        std_mult: float = 2.0) -> Dict[str, float]:
        recent = prices[-period:]
        if not recent:
            return {"upper": 0.0, "middle": 0.0, "lower": 0.0}
        middle = sum(recent) / len(recent)
        std = math.sqrt(sum((p - middle) ** 2 for p in recent) / len(recent))
        return {
            "upper": middle + std_mult * std,
            "middle": middle,
            "lower": middle - std_mult * std,
        }

    # ── Stochastic ──────────────────────────────────────────────────────

    @staticmethod
    def stochastic(prices: List[float], period: int = 14) -> float:
        """%K of the latest close within the high/low of the last window.

        A flat window (or a %K of exactly 0) reads as the neutral 50.
        """
        recent = prices[-period:]
        if not recent:
            return 50.0
        highest = max(recent)
        lowest = min(recent)
        if highest == lowest:
            return 50.0
        k = (prices[-1] - lowest) / (highest - lowest) * 100
        if k == 0:
            k = 50.0
        return max(0.0, min(100.0, k))

    # ── ADX ─────────────────────────────────────────────────────────────

    @staticmethod
    def adx(prices: List[float], period: int = 14) -> float:
        """Close-only trend strength, clamped to [20, 80]."""
        if len(prices) < period + 1:
            return 50.0

        true_range = 0.0
        up_move = 0.0
        down_move = 0.0
        for i in range(len(prices) - period, len(prices)):
            change = prices[i] - prices[i - 1]
            true_range += abs(change)
            if change > 0:
                up_move += change
            elif change < 0:
                down_move += abs(change)

        if true_range == 0:
            return 20.0

        atr = true_range / period
        di_plus = (up_move / atr) * 100 / period
        di_minus = (down_move / atr) * 100 / period
        di = abs(di_plus - di_minus) / (di_plus + di_minus + 0.001)
        return max(20.0, min(80.0, 50 + di * 30))

    # ── Momentum (volume proxy) ─────────────────────────────────────────

    @staticmethod
    def price_momentum(prices: List[float]) -> float:
        """Stand-in for volume strength: size of the last 10-bar move.

        50 is neutral; capped at 100.
        """
        if len(prices) < 20:
            return 50.0
        recent = prices[-10:]
        recent_avg = sum(recent) / len(recent)
        if recent_avg == 0:
            return 50.0
        move = abs(recent[-1] - recent[0]) / recent_avg
        return min(100.0, 50 + move * 200)

    # ── Composite indicator set ─────────────────────────────────────────

    @staticmethod
    def compute_all(prices: List[float]) -> Dict:
        """Compute every indicator at once and return a flat dict."""
        return {
            "current_price": prices[-1] if prices else 0.0,
            "rsi": Indicators.rsi(prices),
            "macd": Indicators.macd(prices),
            "bb": Indicators.bollinger_bands(prices),
            "stochastic": Indicators.stochastic(prices),
            "adx": Indicators.adx(prices),
            "momentum": Indicators.price_momentum(prices),
            "ema_9": Indicators.ema(prices, 9),
            "ema_20": Indicators.ema(prices, 20),
            "ema_21": Indicators.ema(prices, 21),
            "ema_50": Indicators.ema(prices, 50),
            "ema_200": Indicators.ema(prices, 200),
        }
