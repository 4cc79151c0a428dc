"""
Settlement Engine
=================
Closes an active signal at its take-profit or stop-loss price and books the
realized profit/loss against the owner's balance.

A settlement is a single transaction: balance, balance-history sample,
the signal's completion fields and the owning strategy's trade counter are
committed together or not at all. Settlements for the same user are
serialized with the other balance writers through ``accounts.user_lock``,
and rows are re-read inside the lock so a stale session cannot settle twice.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.orm import Session

from signalbot.models.database import Settings, Signal, Strategy
from signalbot.services.accounts import get_user, record_balance, user_lock
from signalbot.services.errors import EntityNotFound, InvalidInput, SignalAlreadySettled
from signalbot.services.strategies.models import LONG, SHORT

logger = logging.getLogger(__name__)

DEFAULT_RISK_FRACTION = 0.1
NON_COMPOUNDING_BASE = 100.0
RESULTS = ("tp", "sl")


@dataclass
class SettlementResult:
    profit_loss: float
    new_balance: float
    profit_percentage: float   # directional price move, percent
    position_size: float
    notional: float

    def to_dict(self) -> Dict:
        return {
            "profit_loss": self.profit_loss,
            "new_balance": self.new_balance,
            "profit_percentage": self.profit_percentage,
        }


def calculate_settlement(balance: float, leverage: int, direction: str,
                         entry: float, exit_price: float,
                         risk_fraction: float,
                         sizing_base: Optional[float] = None) -> SettlementResult:
    """P&L arithmetic for one closed position.

    ``sizing_base`` defaults to ``balance``; the position is sized from it
    while the P&L is always booked onto ``balance``.
    """
    if entry <= 0:
        raise InvalidInput(f"Entry price must be positive, got {entry}")
    if direction == LONG:
        move_pct = (exit_price - entry) / entry * 100
    elif direction == SHORT:
        move_pct = (entry - exit_price) / entry * 100
    else:
        raise InvalidInput(f"Unknown direction: {direction}")

    base = balance if sizing_base is None else sizing_base
    position_size = base * risk_fraction
    notional = position_size * leverage
    profit_loss = notional * (move_pct / 100)
    return SettlementResult(
        profit_loss=profit_loss,
        new_balance=balance + profit_loss,
        profit_percentage=move_pct,
        position_size=position_size,
        notional=notional,
    )


def _parse_price(value: str, field: str) -> float:
    try:
        return float(str(value).replace(",", ""))
    except (TypeError, ValueError):
        raise InvalidInput(f"Signal {field} is not a number: {value!r}")


def settle_signal(db: Session, user_id: str, signal_id: str, result: str,
                  risk_fraction: Optional[float] = None) -> SettlementResult:
    """Complete ``signal_id`` with outcome ``result`` ("tp" or "sl").

    Raises EntityNotFound, SignalAlreadySettled or InvalidInput before any
    state is touched.
    """
    if result not in RESULTS:
        raise InvalidInput(f"result must be 'tp' or 'sl', got {result!r}")
    if risk_fraction is not None and not 0 < risk_fraction <= 1:
        raise InvalidInput(f"risk_fraction must be in (0, 1], got {risk_fraction}")

    with user_lock(user_id):
        try:
            user = get_user(db, user_id, for_update=True)
            # Another session may have completed it since this one loaded it.
            signal = db.query(Signal).filter(
                Signal.id == signal_id, Signal.user_id == user_id
            ).with_for_update().populate_existing().first()
            if not signal:
                raise EntityNotFound("Signal", signal_id)
            if signal.status == "completed":
                raise SignalAlreadySettled(signal_id)

            settings = db.query(Settings).filter(
                Settings.user_id == user_id
            ).populate_existing().first()
            if risk_fraction is None:
                risk_fraction = (settings.risk_per_trade / 100
                                 if settings and settings.risk_per_trade
                                 else DEFAULT_RISK_FRACTION)
            compounding = settings.compound_profits if settings else True
            sizing_base = user.balance if compounding else min(user.balance, NON_COMPOUNDING_BASE)

            entry = _parse_price(signal.entry, "entry")
            exit_price = _parse_price(signal.tp if result == "tp" else signal.sl, result)
            outcome = calculate_settlement(
                balance=user.balance,
                leverage=signal.leverage,
                direction=signal.type,
                entry=entry,
                exit_price=exit_price,
                risk_fraction=risk_fraction,
                sizing_base=sizing_base,
            )

            now = datetime.utcnow()
            record_balance(db, user, outcome.new_balance, timestamp=now)
            signal.status = "completed"
            signal.result = result
            signal.profit_loss = outcome.profit_loss
            signal.completed_at = now
            if signal.strategy_id:
                strategy = db.query(Strategy).filter(
                    Strategy.id == signal.strategy_id
                ).populate_existing().first()
                if strategy:
                    strategy.total_trades = (strategy.total_trades or 0) + 1
            db.commit()
        except Exception:
            db.rollback()
            raise

    pnl_sign = "+" if outcome.profit_loss >= 0 else ""
    logger.info(
        f"Settled {signal.type} {signal.pair} [{result.upper()}] for {user_id}: "
        f"{pnl_sign}{outcome.profit_loss:.2f} ({outcome.profit_percentage:+.2f}% move, "
        f"{signal.leverage}x) → balance {outcome.new_balance:.2f}"
    )
    return outcome
