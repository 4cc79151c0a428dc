"""
Account service — users, settings, strategy presets and the balance ledger.

Every balance change goes through ``record_balance`` so that ``User.balance``
and the appended ``BalanceHistory`` sample are always written together in
the caller's transaction. Writers of ``User.balance`` hold ``user_lock`` for
the whole read-modify-commit.
"""
from __future__ import annotations

import logging
import math
import threading
import weakref
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from signalbot.models.database import (
    DEFAULT_BALANCE, BalanceHistory, Settings, Signal, Strategy, User,
)
from signalbot.services.errors import EntityNotFound, InvalidInput
from signalbot.services.strategies.models import LONG, RISK_TIERS, SHORT, STRATEGY_PRESETS

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "risk_per_trade": 2.0,
    "max_leverage": 10,
    "max_daily_drawdown": 5.0,
    "daily_profit_target": 2.0,
    "compound_profits": True,
    "auto_trading": True,
}

MAX_LEVERAGE_LIMIT = 125
_PERCENT_FIELDS = ("risk_per_trade", "max_daily_drawdown", "daily_profit_target")
_BOOL_FIELDS = ("compound_profits", "auto_trading")


# ── Per-user serialization ──────────────────────────────────────────────────

_registry_lock = threading.Lock()
_user_locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()


def user_lock(user_id: str) -> threading.Lock:
    """The in-process lock guarding ``user_id``'s balance.

    Entries disappear once no caller holds the lock.
    """
    with _registry_lock:
        lock = _user_locks.get(user_id)
        if lock is None:
            lock = threading.Lock()
            _user_locks[user_id] = lock
        return lock


def _check_balance(balance, label: str = "Balance") -> float:
    try:
        value = float(balance)
    except (TypeError, ValueError):
        raise InvalidInput(f"{label} must be a number, got {balance!r}")
    if not math.isfinite(value) or value <= 0:
        raise InvalidInput(f"{label} must be a positive finite number, got {balance}")
    return value


# ── Lookups ─────────────────────────────────────────────────────────────────

def get_user(db: Session, user_id: str, for_update: bool = False) -> User:
    """Load a user; ``for_update`` also refreshes any copy already in the session."""
    query = db.query(User).filter(User.id == user_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    user = query.first()
    if not user:
        raise EntityNotFound("User", user_id)
    return user


def get_settings(db: Session, user_id: str) -> Settings:
    settings = db.query(Settings).filter(Settings.user_id == user_id).first()
    if not settings:
        raise EntityNotFound("Settings", user_id)
    return settings


def get_strategy(db: Session, user_id: str, strategy_id: str) -> Strategy:
    strategy = db.query(Strategy).filter(
        Strategy.id == strategy_id, Strategy.user_id == user_id
    ).first()
    if not strategy:
        raise EntityNotFound("Strategy", strategy_id)
    return strategy


def list_strategies(db: Session, user_id: str) -> List[Strategy]:
    get_user(db, user_id)
    return db.query(Strategy).filter(Strategy.user_id == user_id).all()


def list_signals(db: Session, user_id: str, limit: int = 20,
                 status: Optional[str] = None) -> List[Signal]:
    """Most recent signals first."""
    get_user(db, user_id)
    query = db.query(Signal).filter(Signal.user_id == user_id)
    if status:
        query = query.filter(Signal.status == status)
    return query.order_by(Signal.created_at.desc()).limit(limit).all()


def get_balance_history(db: Session, user_id: str,
                        limit: Optional[int] = None) -> List[BalanceHistory]:
    """The latest ``limit`` samples, returned oldest first."""
    get_user(db, user_id)
    query = db.query(BalanceHistory).filter(
        BalanceHistory.user_id == user_id
    ).order_by(BalanceHistory.timestamp.desc(), BalanceHistory.id.desc())
    if limit:
        query = query.limit(limit)
    return list(reversed(query.all()))


# ── Balance ledger ──────────────────────────────────────────────────────────

def record_balance(db: Session, user: User, new_balance: float,
                   timestamp: Optional[datetime] = None) -> BalanceHistory:
    """Set the user's balance and append the matching history sample.

    Does not commit; the caller owns the transaction.
    """
    user.balance = new_balance
    sample = BalanceHistory(
        user_id=user.id,
        balance=new_balance,
        timestamp=_next_timestamp(db, user.id, timestamp or datetime.utcnow()),
    )
    db.add(sample)
    return sample


def _next_timestamp(db: Session, user_id: str, ts: datetime) -> datetime:
    """Keep history timestamps strictly increasing per user."""
    db.flush()
    last = db.query(BalanceHistory.timestamp).filter(
        BalanceHistory.user_id == user_id
    ).order_by(BalanceHistory.timestamp.desc()).first()
    if last and last[0] is not None and ts <= last[0]:
        return last[0] + timedelta(microseconds=1)
    return ts


def set_balance(db: Session, user_id: str, balance: float) -> User:
    """Manual balance edit."""
    balance = _check_balance(balance)
    with user_lock(user_id):
        try:
            user = get_user(db, user_id, for_update=True)
            record_balance(db, user, balance)
            db.commit()
        except Exception:
            db.rollback()
            raise
    db.refresh(user)
    logger.info(f"User {user_id}: balance set to {balance:.2f}")
    return user


# ── Account lifecycle ───────────────────────────────────────────────────────

def create_account(db: Session, username: str, password: str,
                   email: Optional[str] = None,
                   balance: float = DEFAULT_BALANCE,
                   user_id: Optional[str] = None) -> User:
    """Create a user with default settings, the strategy presets and the
    first balance sample, in one transaction."""
    if not username or not username.strip():
        raise InvalidInput("Username is required")
    balance = _check_balance(balance, "Initial balance")
    if db.query(User).filter(User.username == username).first():
        raise InvalidInput(f"Username already exists: {username}")

    user = User(username=username.strip(), password=password, email=email,
                balance=balance)
    if user_id:
        user.id = user_id
    db.add(user)
    try:
        db.flush()
        db.add(Settings(user_id=user.id, **DEFAULT_SETTINGS))
        for preset in STRATEGY_PRESETS:
            db.add(Strategy(user_id=user.id, total_trades=0, **preset))
        record_balance(db, user, balance)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(user)
    logger.info(f"Created account {user.username} ({user.id}) with balance {balance:.2f}")
    return user


def ensure_demo_account(db: Session, user_id: str) -> User:
    """Create the demo account on first start; no-op afterwards."""
    user = db.query(User).filter(User.id == user_id).first()
    if user:
        return user
    return create_account(db, username="Trader_01", password="demo",
                          email="demo@signalbot.local", user_id=user_id)


def reset_account(db: Session, user_id: str) -> User:
    """Purge signals and balance history and restore the default balance.

    No history sample is written, so the history is empty afterwards.
    """
    with user_lock(user_id):
        try:
            user = get_user(db, user_id, for_update=True)
            deleted_signals = db.query(Signal).filter(
                Signal.user_id == user_id
            ).delete(synchronize_session=False)
            deleted_samples = db.query(BalanceHistory).filter(
                BalanceHistory.user_id == user_id
            ).delete(synchronize_session=False)
            user.balance = DEFAULT_BALANCE
            db.commit()
        except Exception:
            db.rollback()
            raise
    db.expire_all()
    logger.info(f"Reset account {user_id}: removed {deleted_signals} signals, "
                f"{deleted_samples} balance samples")
    return get_user(db, user_id)


# ── Settings / strategies ───────────────────────────────────────────────────

def update_settings(db: Session, user_id: str, updates: Dict) -> Settings:
    """Partial update; unknown keys and ``None`` values are ignored."""
    settings = get_settings(db, user_id)
    changes = {k: v for k, v in updates.items() if v is not None}

    for field in _PERCENT_FIELDS:
        if field in changes and not 0 < float(changes[field]) <= 100:
            raise InvalidInput(f"{field} must be a percentage in (0, 100]")
    if "max_leverage" in changes:
        lev = int(changes["max_leverage"])
        if lev < 1 or lev > MAX_LEVERAGE_LIMIT:
            raise InvalidInput(f"max_leverage must be 1-{MAX_LEVERAGE_LIMIT}")

    for field in _PERCENT_FIELDS:
        if field in changes:
            setattr(settings, field, float(changes[field]))
    if "max_leverage" in changes:
        settings.max_leverage = int(changes["max_leverage"])
    for field in _BOOL_FIELDS:
        if field in changes:
            setattr(settings, field, bool(changes[field]))

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(settings)
    return settings


def update_strategy(db: Session, user_id: str, strategy_id: str, updates: Dict) -> Strategy:
    """Toggle ``active`` or edit the leverage band."""
    strategy = get_strategy(db, user_id, strategy_id)
    changes = {k: v for k, v in updates.items() if v is not None}

    lo = int(changes.get("min_leverage", strategy.min_leverage))
    hi = int(changes.get("max_leverage", strategy.max_leverage))
    if lo < 1 or hi > MAX_LEVERAGE_LIMIT or lo > hi:
        raise InvalidInput("Leverage band must satisfy 1 <= min_leverage <= max_leverage "
                           f"<= {MAX_LEVERAGE_LIMIT}")
    if "risk" in changes and changes["risk"] not in RISK_TIERS:
        raise InvalidInput(f"risk must be one of {', '.join(RISK_TIERS)}")

    if "active" in changes:
        strategy.active = bool(changes["active"])
    if "risk" in changes:
        strategy.risk = changes["risk"]
    strategy.min_leverage = lo
    strategy.max_leverage = hi
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(strategy)
    return strategy


def create_manual_signal(db: Session, user_id: str, data: Dict) -> Signal:
    """Persist a caller-supplied signal. It always starts ``active``."""
    user = get_user(db, user_id)
    if data.get("type") not in (LONG, SHORT):
        raise InvalidInput("type must be LONG or SHORT")
    strategy_id = data.get("strategy_id")
    if strategy_id:
        get_strategy(db, user_id, strategy_id)

    prices = {}
    for field in ("entry", "tp", "sl"):
        try:
            value = float(str(data.get(field)).replace(",", ""))
        except (TypeError, ValueError):
            raise InvalidInput(f"{field} must be a number")
        if value <= 0:
            raise InvalidInput(f"{field} must be positive")
        prices[field] = f"{value:.2f}"

    confidence = int(data.get("confidence", 0))
    if not 0 <= confidence <= 100:
        raise InvalidInput("confidence must be 0-100")
    leverage = int(data.get("leverage", 1))
    max_leverage = get_settings(db, user_id).max_leverage
    if leverage < 1 or leverage > max_leverage:
        raise InvalidInput(f"leverage must be 1-{max_leverage}")

    signal = Signal(
        user_id=user.id,
        strategy_id=strategy_id,
        pair=data.get("pair") or "",
        type=data["type"],
        confidence=confidence,
        leverage=leverage,
        status="active",
        **prices,
    )
    if not signal.pair:
        raise InvalidInput("pair is required")
    db.add(signal)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(signal)
    return signal


# ── Serialization ───────────────────────────────────────────────────────────

def user_to_dict(user: User) -> Dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "balance": round(user.balance, 2),
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def strategy_to_dict(s: Strategy) -> Dict:
    return {
        "id": s.id,
        "user_id": s.user_id,
        "name": s.name,
        "description": s.description,
        "risk": s.risk,
        "win_rate": s.win_rate,
        "avg_profit": s.avg_profit,
        "active": s.active,
        "total_trades": s.total_trades,
        "profit_factor": s.profit_factor,
        "max_drawdown": s.max_drawdown,
        "min_leverage": s.min_leverage,
        "max_leverage": s.max_leverage,
    }


def signal_to_dict(s: Signal) -> Dict:
    return {
        "id": s.id,
        "user_id": s.user_id,
        "strategy_id": s.strategy_id,
        "pair": s.pair,
        "type": s.type,
        "entry": s.entry,
        "tp": s.tp,
        "sl": s.sl,
        "confidence": s.confidence,
        "leverage": s.leverage,
        "status": s.status,
        "result": s.result,
        "profit_loss": round(s.profit_loss, 2) if s.profit_loss is not None else None,
        "completed_at": s.completed_at.isoformat() if s.completed_at else None,
        "created_at": s.created_at.isoformat() if s.created_at else None,
    }


def settings_to_dict(s: Settings) -> Dict:
    return {
        "risk_per_trade": s.risk_per_trade,
        "max_leverage": s.max_leverage,
        "max_daily_drawdown": s.max_daily_drawdown,
        "daily_profit_target": s.daily_profit_target,
        "compound_profits": s.compound_profits,
        "auto_trading": s.auto_trading,
    }


def balance_sample_to_dict(h: BalanceHistory) -> Dict:
    return {
        "balance": round(h.balance, 2),
        "timestamp": h.timestamp.isoformat() if h.timestamp else None,
    }
