"""
Database models for the signal dashboard.
Users own strategies, signals, one settings row and a balance history.
"""
import uuid

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Boolean
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime

Base = declarative_base()

DEFAULT_BALANCE = 100.0


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Account holder. ``balance`` is the account equity."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_uuid)
    username = Column(String, unique=True, index=True, nullable=False)
    password = Column(String, nullable=False)
    email = Column(String, nullable=True)
    balance = Column(Float, nullable=False, default=DEFAULT_BALANCE)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    strategies = relationship("Strategy", back_populates="user", cascade="all, delete-orphan")
    signals = relationship("Signal", back_populates="user", cascade="all, delete-orphan")
    settings = relationship("Settings", back_populates="user", uselist=False,
                            cascade="all, delete-orphan")
    balance_history = relationship("BalanceHistory", back_populates="user",
                                   cascade="all, delete-orphan",
                                   order_by="BalanceHistory.timestamp")


class Strategy(Base):
    """Named strategy preset with its reported performance metrics"""
    __tablename__ = "strategies"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=False)
    risk = Column(String, nullable=False)           # High, Med, Low
    win_rate = Column(Integer, nullable=False)      # percent
    avg_profit = Column(Float, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    total_trades = Column(Integer, nullable=False, default=0)
    profit_factor = Column(Float, nullable=False, default=0.0)
    max_drawdown = Column(Float, nullable=False, default=0.0)
    min_leverage = Column(Integer, nullable=False, default=1)
    max_leverage = Column(Integer, nullable=False, default=10)

    user = relationship("User", back_populates="strategies")


class Signal(Base):
    """Trade signal. Prices are stored as 2-decimal strings."""
    __tablename__ = "signals"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    strategy_id = Column(String, ForeignKey("strategies.id"), nullable=True)
    pair = Column(String, nullable=False)           # e.g. "BTC/USDT"
    type = Column(String, nullable=False)           # LONG, SHORT
    entry = Column(String, nullable=False)
    tp = Column(String, nullable=False)
    sl = Column(String, nullable=False)
    confidence = Column(Integer, nullable=False)
    leverage = Column(Integer, nullable=False, default=1)
    status = Column(String, nullable=False, default="active")  # active, completed
    result = Column(String, nullable=True)          # tp, sl
    profit_loss = Column(Float, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    user = relationship("User", back_populates="signals")
    strategy = relationship("Strategy")


class Settings(Base):
    """Per-user risk settings. Percentages are relative to current balance."""
    __tablename__ = "settings"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True)
    risk_per_trade = Column(Float, nullable=False, default=2.0)
    max_leverage = Column(Integer, nullable=False, default=10)
    max_daily_drawdown = Column(Float, nullable=False, default=5.0)
    daily_profit_target = Column(Float, nullable=False, default=2.0)
    compound_profits = Column(Boolean, nullable=False, default=True)
    auto_trading = Column(Boolean, nullable=False, default=True)

    user = relationship("User", back_populates="settings")


class BalanceHistory(Base):
    """Append-only balance samples for the growth chart"""
    __tablename__ = "balance_history"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    balance = Column(Float, nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow, index=True)

    user = relationship("User", back_populates="balance_history")
