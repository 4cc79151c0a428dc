"""Tests for account lifecycle, settings and the balance ledger."""

import pytest

from signalbot.models.database import Signal, User
from signalbot.services import accounts
from signalbot.services.errors import EntityNotFound, InvalidInput
from signalbot.services.settlement import settle_signal

from conftest import make_signal


class TestCreateAccount:

    def test_seeds_settings_presets_and_first_sample(self, db, account):
        assert account.balance == 100.0

        settings = accounts.get_settings(db, account.id)
        assert accounts.settings_to_dict(settings) == {
            "risk_per_trade": 2.0,
            "max_leverage": 10,
            "max_daily_drawdown": 5.0,
            "daily_profit_target": 2.0,
            "compound_profits": True,
            "auto_trading": True,
        }

        strategies = {s.name: s for s in accounts.list_strategies(db, account.id)}
        assert set(strategies) == {"Micro-Scalp v2", "Trend Master", "Sentiment AI"}
        assert strategies["Trend Master"].win_rate == 85
        assert strategies["Sentiment AI"].active is False
        assert all(s.total_trades == 0 for s in strategies.values())

        history = accounts.get_balance_history(db, account.id)
        assert [h.balance for h in history] == [100.0]

    def test_duplicate_username(self, db, account):
        with pytest.raises(InvalidInput):
            accounts.create_account(db, "tester", "other")

    def test_non_positive_balance(self, db):
        with pytest.raises(InvalidInput):
            accounts.create_account(db, "broke", "pw", balance=0)

    def test_infinite_balance(self, db):
        with pytest.raises(InvalidInput):
            accounts.create_account(db, "rich", "pw", balance=float("inf"))
        assert db.query(User).count() == 0

    def test_ensure_demo_account_is_idempotent(self, db):
        first = accounts.ensure_demo_account(db, "demo-user-001")
        second = accounts.ensure_demo_account(db, "demo-user-001")
        assert first.id == second.id == "demo-user-001"
        assert len(accounts.list_strategies(db, "demo-user-001")) == 3


class TestBalance:

    def test_set_balance_appends_sample(self, db, account):
        accounts.set_balance(db, account.id, 250.0)
        assert accounts.get_user(db, account.id).balance == 250.0
        assert [h.balance for h in accounts.get_balance_history(db, account.id)] == [100.0, 250.0]

    @pytest.mark.parametrize("value", [0, -10.0, float("inf"), float("-inf"), float("nan"), "abc"])
    def test_set_balance_rejects_non_positive(self, db, account, value):
        with pytest.raises(InvalidInput):
            accounts.set_balance(db, account.id, value)
        assert len(accounts.get_balance_history(db, account.id)) == 1

    def test_unknown_user(self, db):
        with pytest.raises(EntityNotFound):
            accounts.set_balance(db, "ghost", 10.0)

    def test_history_limit_keeps_latest_oldest_first(self, db, account):
        for value in (110.0, 120.0, 130.0):
            accounts.set_balance(db, account.id, value)
        history = accounts.get_balance_history(db, account.id, limit=2)
        assert [h.balance for h in history] == [120.0, 130.0]


class TestReset:

    def test_reset_purges_signals_and_history(self, db, account):
        signal = make_signal(db, account.id)
        make_signal(db, account.id)
        settle_signal(db, account.id, signal.id, "tp", risk_fraction=0.1)

        user = accounts.reset_account(db, account.id)

        assert user.balance == 100.0
        assert db.query(Signal).filter(Signal.user_id == account.id).count() == 0
        assert accounts.get_balance_history(db, account.id) == []
        # strategies and settings survive
        assert len(accounts.list_strategies(db, account.id)) == 3
        assert accounts.get_settings(db, account.id).max_leverage == 10

    def test_reset_leaves_other_users_alone(self, db, account):
        other = accounts.create_account(db, "other", "pw")
        make_signal(db, other.id)
        accounts.reset_account(db, account.id)
        assert len(accounts.list_signals(db, other.id)) == 1
        assert len(accounts.get_balance_history(db, other.id)) == 1


class TestSettings:

    def test_partial_update(self, db, account):
        settings = accounts.update_settings(db, account.id, {"risk_per_trade": 5.0,
                                                            "max_leverage": None})
        assert settings.risk_per_trade == 5.0
        assert settings.max_leverage == 10

    @pytest.mark.parametrize("updates", [
        {"risk_per_trade": 0},
        {"max_daily_drawdown": 150},
        {"daily_profit_target": -1},
        {"max_leverage": 0},
        {"max_leverage": 126},
    ])
    def test_validation(self, db, account, updates):
        with pytest.raises(InvalidInput):
            accounts.update_settings(db, account.id, updates)
        assert accounts.get_settings(db, account.id).risk_per_trade == 2.0


class TestStrategies:

    def test_toggle_and_band(self, db, account, trend_master):
        updated = accounts.update_strategy(db, account.id, trend_master.id,
                                           {"active": False, "min_leverage": 2, "max_leverage": 8})
        assert updated.active is False
        assert (updated.min_leverage, updated.max_leverage) == (2, 8)

    def test_inverted_band(self, db, account, trend_master):
        with pytest.raises(InvalidInput):
            accounts.update_strategy(db, account.id, trend_master.id, {"min_leverage": 6})

    def test_strategy_of_another_user(self, db, account, trend_master):
        other = accounts.create_account(db, "other", "pw")
        with pytest.raises(EntityNotFound):
            accounts.update_strategy(db, other.id, trend_master.id, {"active": False})


class TestManualSignals:

    def test_create_and_list(self, db, account):
        signal = make_signal(db, account.id, entry="65000", tp="68000.5", sl="63000")
        assert signal.status == "active"
        assert (signal.entry, signal.tp, signal.sl) == ("65000.00", "68000.50", "63000.00")
        assert [s.id for s in accounts.list_signals(db, account.id)] == [signal.id]

    @pytest.mark.parametrize("overrides", [
        {"type_": "FLAT"},
        {"entry": "abc"},
        {"tp": "-5"},
        {"leverage": 11},
        {"leverage": 0},
    ])
    def test_rejected(self, db, account, overrides):
        with pytest.raises(InvalidInput):
            make_signal(db, account.id, **overrides)
        assert accounts.list_signals(db, account.id) == []


class TestFailedCommit:
    """A failed commit leaves the session rolled back, not half-updated."""

    @staticmethod
    def _failing_commit(monkeypatch, db):
        def boom():
            raise RuntimeError("disk I/O error")
        monkeypatch.setattr(db, "commit", boom)

    def test_settings_rolled_back(self, db, account, monkeypatch):
        self._failing_commit(monkeypatch, db)
        with pytest.raises(RuntimeError):
            accounts.update_settings(db, account.id, {"max_leverage": 20})
        monkeypatch.undo()
        assert accounts.get_settings(db, account.id).max_leverage == 10

    def test_strategy_rolled_back(self, db, account, trend_master, monkeypatch):
        self._failing_commit(monkeypatch, db)
        with pytest.raises(RuntimeError):
            accounts.update_strategy(db, account.id, trend_master.id, {"active": False})
        monkeypatch.undo()
        assert accounts.get_strategy(db, account.id, trend_master.id).active is True

    def test_manual_signal_rolled_back(self, db, account, monkeypatch):
        self._failing_commit(monkeypatch, db)
        with pytest.raises(RuntimeError):
            make_signal(db, account.id)
        monkeypatch.undo()
        db.commit()
        assert accounts.list_signals(db, account.id) == []
