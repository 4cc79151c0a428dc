"""Tests for the signal synthesizer."""

import pytest

from signalbot.models.database import Strategy
from signalbot.services.calibration import DEFAULT_CALIBRATION
from signalbot.services.errors import InvalidInput
from signalbot.services.signals import (
    blend_confidence, calculate_leverage, calculate_levels, format_price, synthesize,
)
from signalbot.services.strategies import LONG, SHORT, EvaluationResult


def _strategy(win_rate=85, min_leverage=1, max_leverage=5):
    return Strategy(id="strat-1", name="Test", description="", risk="Low",
                    win_rate=win_rate, avg_profit=1.0, min_leverage=min_leverage,
                    max_leverage=max_leverage)


class TestLevels:

    def test_long(self):
        tp, sl = calculate_levels(100.0, LONG, 75)
        assert tp == pytest.approx(106.0)
        assert sl == pytest.approx(97.0)

    def test_short(self):
        tp, sl = calculate_levels(100.0, SHORT, 75)
        assert tp == pytest.approx(94.0)
        assert sl == pytest.approx(103.0)

    def test_format_price(self):
        assert format_price(1234.5) == "1234.50"
        assert format_price(0.123456) == "0.12"


class TestLeverage:

    @pytest.mark.parametrize("confidence,max_lev,expected", [
        (75, 10, 6),     # 1 + 25 * 0.18 = 5.5 -> 6
        (55, 10, 2),     # 1.9 -> 2
        (50, 10, 1),
        (80, 3, 3),      # capped by settings
        (80, 125, 6),    # 6.4 -> 6
    ])
    def test_without_strategy(self, confidence, max_lev, expected):
        assert calculate_leverage(confidence, max_lev) == expected

    @pytest.mark.parametrize("confidence,expected", [
        (55, 3), (80, 10), (70, 7), (90, 10), (40, 3),
    ])
    def test_strategy_band(self, confidence, expected):
        strategy = _strategy(min_leverage=3, max_leverage=10)
        assert calculate_leverage(confidence, 10, strategy) == expected

    def test_strategy_band_capped_by_settings(self):
        strategy = _strategy(min_leverage=3, max_leverage=10)
        assert calculate_leverage(80, 5, strategy) == 5


class TestConfidenceBlend:

    def test_strategy_win_rate_wins_over_calibration(self):
        result = blend_confidence(EvaluationResult(70, LONG), _strategy(win_rate=85),
                                  DEFAULT_CALIBRATION)
        assert result == 78  # 77.5 rounds half up

    def test_calibration_bucket(self):
        assert blend_confidence(EvaluationResult(72, LONG), calibration=DEFAULT_CALIBRATION) == 72
        assert blend_confidence(EvaluationResult(62, SHORT), calibration=DEFAULT_CALIBRATION) == 62
        assert blend_confidence(EvaluationResult(55, SHORT), calibration=DEFAULT_CALIBRATION) == 55

    def test_no_prior(self):
        assert blend_confidence(EvaluationResult(66, SHORT)) == 66


class TestSynthesize:

    def test_builds_active_unsaved_signal(self):
        signal = synthesize(EvaluationResult(75, LONG), 50000.0,
                            user_id="u1", pair="BTC/USDT", max_leverage=10)
        assert signal.id is None
        assert signal.status == "active"
        assert signal.type == LONG
        assert signal.entry == "50000.00"
        assert signal.tp == "53000.00"
        assert signal.sl == "48500.00"
        assert signal.confidence == 75
        assert signal.leverage == 6
        assert signal.strategy_id is None

    def test_with_strategy(self):
        signal = synthesize(EvaluationResult(76, SHORT), 200.0, user_id="u1",
                            pair="ETH/USDT", max_leverage=10, strategy=_strategy(85, 1, 5))
        assert signal.confidence == 81           # (76 + 85) / 2 = 80.5
        assert signal.leverage == 5              # ratio clamps to 1 -> band max
        assert signal.strategy_id == "strat-1"
        assert float(signal.tp) < 200.0 < float(signal.sl)

    @pytest.mark.parametrize("price", [0.0, -1.0, None])
    def test_rejects_non_positive_price(self, price):
        with pytest.raises(InvalidInput):
            synthesize(EvaluationResult(70, LONG), price, user_id="u1",
                       pair="BTC/USDT", max_leverage=10)

    def test_rejects_unknown_direction(self):
        with pytest.raises(InvalidInput):
            synthesize(EvaluationResult(70, "SIDEWAYS"), 10.0, user_id="u1",
                       pair="BTC/USDT", max_leverage=10)
