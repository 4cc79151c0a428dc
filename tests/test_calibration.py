"""Tests for startup calibration."""

from signalbot.services.calibration import DEFAULT_CALIBRATION, Calibration, calibrate
from signalbot.services.strategies import LONG, SHORT, EvaluationResult

from conftest import rising


class TestCalibration:

    def test_defaults(self):
        assert DEFAULT_CALIBRATION.to_dict() == {
            "strong_long_win_rate": 72,
            "strong_short_win_rate": 71,
            "mild_long_win_rate": 62,
            "mild_short_win_rate": 61,
            "conflicting_win_rate": 55,
        }

    def test_short_history_uses_defaults(self):
        assert calibrate(rising(49)) == DEFAULT_CALIBRATION

    def test_steady_rally_is_all_conflicting_hits(self):
        # RSI saturates at 100 with EMA12 > EMA26: every day is "conflicting"
        # and the next week always clears +2%. Empty buckets keep defaults.
        result = calibrate(rising(100))
        assert result.conflicting_win_rate == 100
        assert result.strong_long_win_rate == 72
        assert result.mild_short_win_rate == 61

    def test_bucket_lookup(self):
        cal = Calibration(80, 70, 60, 50, 40)
        assert cal.win_rate_for(EvaluationResult(75, LONG)) == 80
        assert cal.win_rate_for(EvaluationResult(70, SHORT)) == 70
        assert cal.win_rate_for(EvaluationResult(65, LONG)) == 60
        assert cal.win_rate_for(EvaluationResult(60, SHORT)) == 50
        assert cal.win_rate_for(EvaluationResult(59, LONG)) == 40
