"""
Shared test fixtures: in-memory database, seeded account, fake market data.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_TRADING_INTERVAL", "0")
os.environ.setdefault("SIGNAL_MONITOR_INTERVAL", "0")

from typing import List, Optional

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from signalbot.database import create_db_engine, init_db
from signalbot.services import accounts
from signalbot.services.errors import MarketDataUnavailable


# ── Price series builders ─────────────────────────────────────────────────

def rising(n: int = 100, start: float = 100.0, step: float = 1.0) -> List[float]:
    return [start + i * step for i in range(n)]


def falling(n: int = 100, start: float = 300.0, step: float = 1.0) -> List[float]:
    return [start - i * step for i in range(n)]


def zigzag_decline(n: int = 250, start: float = 1000.0) -> List[float]:
    """Alternating -2 / +1 steps; with an even ``n`` the last step is -2."""
    prices = [start]
    for i in range(1, n):
        prices.append(prices[-1] + (-2.0 if i % 2 == 1 else 1.0))
    return prices


def compounding(n: int, daily_pct: float, start: float = 100.0) -> List[float]:
    return [start * (1 + daily_pct / 100) ** i for i in range(n)]


# ── Database ──────────────────────────────────────────────────────────────

@pytest.fixture()
def engine():
    eng = create_db_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture()
def account(db):
    """A freshly created account: balance 100, default settings, 3 presets."""
    return accounts.create_account(db, "tester", "secret", email="tester@example.com")


@pytest.fixture()
def trend_master(db, account):
    return next(s for s in accounts.list_strategies(db, account.id) if s.name == "Trend Master")


@pytest.fixture()
def shared_db(tmp_path):
    """File-backed database for tests that need several independent sessions.

    Yields ``(Session, user_id)`` with one seeded account.
    """
    eng = create_db_engine(f"sqlite:///{tmp_path / 'shared.db'}")
    init_db(bind=eng)
    Session = sessionmaker(bind=eng, autocommit=False, autoflush=False)
    setup = Session()
    try:
        user_id = accounts.create_account(setup, "shared", "secret").id
    finally:
        setup.close()
    yield Session, user_id
    eng.dispose()


def make_signal(db, user_id: str, type_: str = "LONG", entry: str = "100.00",
                tp: str = "110.00", sl: str = "95.00", leverage: int = 5,
                strategy_id: Optional[str] = None):
    return accounts.create_manual_signal(db, user_id, {
        "pair": "BTC/USDT",
        "type": type_,
        "entry": entry,
        "tp": tp,
        "sl": sl,
        "confidence": 70,
        "leverage": leverage,
        "strategy_id": strategy_id,
    })


# ── Market data ───────────────────────────────────────────────────────────

class FakeMarketData:
    """Stands in for MarketDataService with canned prices."""

    def __init__(self, history: Optional[List[float]] = None, price: float = 1000.0,
                 fail: bool = False):
        self.history = history if history is not None else zigzag_decline()
        self.price = price
        self.fail = fail
        self.calls = []

    def _check(self):
        if self.fail:
            raise MarketDataUnavailable("feed down")

    def get_price_history(self, coin: str, days: int = 365) -> List[float]:
        self.calls.append(("history", coin, days))
        self._check()
        return list(self.history)

    def get_price_history_with_dates(self, coin: str, days: int = 365):
        self.calls.append(("history_with_dates", coin, days))
        self._check()
        return [(f"day-{i:03d}", p) for i, p in enumerate(self.history)]

    def get_current_price(self, coin: str) -> float:
        self.calls.append(("price", coin))
        self._check()
        return self.price

    def health_check(self):
        return {"status": "ok", "api": "fake"}


@pytest.fixture()
def market():
    return FakeMarketData()
