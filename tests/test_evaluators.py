"""Tests for the strategy evaluators and the evaluator registry."""

import pytest

from signalbot.services.errors import InvalidInput
from signalbot.services.strategies import (
    EVALUATORS, LONG, SHORT, EvaluationResult, StrategyEngine,
)

from conftest import falling, rising, zigzag_decline


@pytest.fixture(scope="module")
def engine():
    return StrategyEngine()


class TestRegistry:

    def test_every_registered_evaluator_resolves(self, engine):
        for key in EVALUATORS:
            assert engine.get(key).cfg.key == key

    def test_unknown_evaluator(self, engine):
        with pytest.raises(InvalidInput):
            engine.get("moon_shot")

    def test_describe(self, engine):
        keys = {d["key"] for d in engine.describe()}
        assert keys == set(EVALUATORS)
        contrarian = [d for d in engine.describe() if d["contrarian"]]
        assert [d["key"] for d in contrarian] == ["high_precision_contrarian"]

    def test_result_serialization(self):
        assert EvaluationResult(70, SHORT).to_dict() == {"confidence": 70, "trade_type": "SHORT"}


class TestContract:

    @pytest.mark.parametrize("key", sorted(EVALUATORS))
    def test_short_input_returns_neutral_long(self, engine, key):
        assert engine.evaluate(key, rising(20)) == EvaluationResult(55, LONG)

    @pytest.mark.parametrize("key", sorted(EVALUATORS))
    @pytest.mark.parametrize("series", [rising(120), falling(120), zigzag_decline(250),
                                        [100.0] * 80])
    def test_confidence_is_clamped(self, engine, key, series):
        result = engine.evaluate(key, series)
        assert 55 <= result.confidence <= 80
        assert isinstance(result.confidence, int)
        assert result.direction in (LONG, SHORT)

    @pytest.mark.parametrize("key", sorted(EVALUATORS))
    def test_pure(self, engine, key):
        prices = zigzag_decline(250)
        snapshot = list(prices)
        first = engine.evaluate(key, prices)
        assert engine.evaluate(key, prices) == first
        assert prices == snapshot


class TestTrendFollowing:

    def test_overbought_uptrend_is_continuation_long(self, engine):
        # RSI 100 blocks every momentum tier; the EMA stack still points up
        assert engine.evaluate("trend_following", rising(100)) == EvaluationResult(58, LONG)

    def test_oversold_downtrend_is_continuation_short(self, engine):
        assert engine.evaluate("trend_following", falling(100)) == EvaluationResult(58, SHORT)

    def test_full_bearish_stack(self, engine):
        # price < EMA20 < EMA50 < EMA200, MACD below signal, RSI 33
        assert engine.evaluate("trend_following", zigzag_decline(250)) == EvaluationResult(76, SHORT)


class TestMeanReversion:

    def test_fades_a_rally_at_the_upper_band(self, engine):
        assert engine.evaluate("mean_reversion", rising(100, start=100.0)) == EvaluationResult(77, SHORT)

    def test_bearish_macd_without_band_touch(self, engine):
        assert engine.evaluate("mean_reversion", falling(100)) == EvaluationResult(59, SHORT)


class TestHighPrecision:

    def test_bearish_alignment(self, engine):
        assert engine.evaluate("high_precision", zigzag_decline(250)) == EvaluationResult(72, SHORT)

    def test_contrarian_inverts_alignment(self, engine):
        assert engine.evaluate("high_precision_contrarian", zigzag_decline(250)) == \
            EvaluationResult(72, LONG)

    @pytest.mark.parametrize("key", ["high_precision", "high_precision_contrarian"])
    def test_rsi_extremes_are_not_inverted(self, engine, key):
        assert engine.evaluate(key, rising(100)) == EvaluationResult(60, SHORT)
        assert engine.evaluate(key, falling(100)) == EvaluationResult(60, LONG)
