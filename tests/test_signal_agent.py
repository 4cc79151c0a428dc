"""Tests for signal generation, the auto-trading cycle and the TP/SL monitor."""

import pytest

from signalbot.models.database import Signal
from signalbot.services import accounts
from signalbot.services.calibration import DEFAULT_CALIBRATION
from signalbot.services.errors import InvalidInput, MarketDataUnavailable
from signalbot.services.signal_agent import SignalAgentService

from conftest import FakeMarketData, make_signal, rising


@pytest.fixture()
def agent(market):
    return SignalAgentService(market, calibration=DEFAULT_CALIBRATION)


class TestGenerate:

    def test_calibrated_signal_without_strategy(self, db, account, agent):
        signal = agent.generate_signal(db, account.id, "bitcoin")
        assert signal.id
        assert signal.pair == "BTC/USDT"
        assert signal.type == "SHORT"
        assert signal.status == "active"
        assert signal.confidence == 74
        assert signal.leverage == 5
        assert (signal.entry, signal.tp, signal.sl) == ("1000.00", "940.80", "1030.00")
        assert signal.strategy_id is None

    def test_strategy_win_rate_and_band(self, db, account, trend_master, agent):
        signal = agent.generate_signal(db, account.id, "bitcoin", strategy_id=trend_master.id)
        assert signal.confidence == 81
        assert signal.leverage == 5
        assert signal.strategy_id == trend_master.id

    def test_history_requests(self, db, account, agent, market):
        agent.generate_signal(db, account.id, "ethereum")
        assert ("history", "ethereum", 90) in market.calls
        assert ("price", "ethereum") in market.calls

    def test_short_history(self, db, account):
        agent = SignalAgentService(FakeMarketData(history=rising(59)))
        with pytest.raises(MarketDataUnavailable):
            agent.generate_signal(db, account.id, "bitcoin")
        assert accounts.list_signals(db, account.id) == []

    def test_unsupported_coin(self, db, account, agent):
        with pytest.raises(InvalidInput):
            agent.generate_signal(db, account.id, "shibacoin")

    def test_feed_down_persists_nothing(self, db, account):
        agent = SignalAgentService(FakeMarketData(fail=True))
        with pytest.raises(MarketDataUnavailable):
            agent.generate_signal(db, account.id, "bitcoin")
        assert db.query(Signal).count() == 0

    def test_unknown_evaluator(self, market):
        with pytest.raises(InvalidInput):
            SignalAgentService(market, evaluator_key="astrology")


class TestAutoCycle:

    def test_creates_one_signal_per_user(self, db, account, trend_master, agent):
        created = agent.run_auto_cycle(db)
        assert len(created) == 1
        assert created[0].pair == "BTC/USDT"
        assert created[0].strategy_id == trend_master.id

    def test_rotates_coins(self, db, account, agent):
        agent.run_auto_cycle(db)
        second = agent.run_auto_cycle(db)
        assert second[0].pair == "ETH/USDT"

    def test_auto_trading_off(self, db, account, agent):
        accounts.update_settings(db, account.id, {"auto_trading": False})
        assert agent.run_auto_cycle(db) == []

    def test_active_signal_cap(self, db, account, agent):
        for _ in range(5):
            make_signal(db, account.id)
        assert agent.run_auto_cycle(db) == []

    def test_daily_profit_target(self, db, account, agent):
        accounts.set_balance(db, account.id, 103.0)
        assert agent.run_auto_cycle(db) == []

    def test_daily_drawdown(self, db, account, agent):
        accounts.set_balance(db, account.id, 94.0)
        assert agent.run_auto_cycle(db) == []

    def test_no_active_strategy(self, db, account, agent):
        for strategy in accounts.list_strategies(db, account.id):
            accounts.update_strategy(db, account.id, strategy.id, {"active": False})
        assert agent.run_auto_cycle(db) == []

    def test_feed_down_is_skipped(self, db, account):
        agent = SignalAgentService(FakeMarketData(fail=True))
        assert agent.run_auto_cycle(db) == []


class TestMonitor:

    def test_take_profit_crossed(self, db, account):
        signal = make_signal(db, account.id, leverage=5)
        agent = SignalAgentService(FakeMarketData(price=111.0))

        settled = agent.check_active_signals(db)

        assert len(settled) == 1
        assert settled[0]["signal_id"] == signal.id
        assert settled[0]["result"] == "tp"
        assert settled[0]["new_balance"] == pytest.approx(101.0)
        db.expire_all()
        assert db.get(Signal, signal.id).status == "completed"
        assert accounts.get_user(db, account.id).balance == pytest.approx(101.0)

    def test_stop_loss_crossed_short(self, db, account):
        make_signal(db, account.id, type_="SHORT", entry="100.00", tp="90.00", sl="105.00")
        agent = SignalAgentService(FakeMarketData(price=106.0))
        settled = agent.check_active_signals(db)
        assert [s["result"] for s in settled] == ["sl"]
        assert settled[0]["profit_loss"] < 0

    def test_price_inside_band(self, db, account):
        make_signal(db, account.id)
        agent = SignalAgentService(FakeMarketData(price=100.0))
        assert agent.check_active_signals(db) == []
        assert len(accounts.list_signals(db, account.id, status="active")) == 1

    def test_feed_down_leaves_signals_active(self, db, account):
        make_signal(db, account.id)
        agent = SignalAgentService(FakeMarketData(fail=True))
        assert agent.check_active_signals(db) == []
        assert len(accounts.list_signals(db, account.id, status="active")) == 1
