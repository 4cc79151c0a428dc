"""
Signal Agent
============
Ties market data, the configured evaluator and the synthesizer together:

- on-demand signal generation for one coin
- the auto-trading cycle that issues signals for users with auto-trading on
- the monitor that settles active signals whose TP or SL has been crossed
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from signalbot.models.database import BalanceHistory, Settings, Signal, Strategy, User
from signalbot.services import accounts
from signalbot.services.calibration import Calibration
from signalbot.services.errors import InvalidInput, MarketDataUnavailable, SignalAlreadySettled
from signalbot.services.market_data import (
    SUPPORTED_COINS, MarketDataService, coin_for_pair, pair_for,
)
from signalbot.services.settlement import settle_signal
from signalbot.services.signals import synthesize
from signalbot.services.strategies import LONG, StrategyEngine

logger = logging.getLogger(__name__)

HISTORY_DAYS = 90
MIN_HISTORY_DAYS = 60
MAX_ACTIVE_SIGNALS = 5


class SignalAgentService:
    """Generates and monitors signals using one evaluator per deployment."""

    def __init__(self, market_service: MarketDataService,
                 engine: Optional[StrategyEngine] = None,
                 evaluator_key: str = "trend_following",
                 calibration: Optional[Calibration] = None):
        self.market_service = market_service
        self.engine = engine or StrategyEngine()
        self.evaluator_key = evaluator_key
        self.engine.get(evaluator_key)
        self.calibration = calibration
        self._rotation: Dict[str, int] = {}

    # ── On-demand generation ──────────────────────────────────────────────

    def generate_signal(self, db: Session, user_id: str, coin: str,
                        strategy_id: Optional[str] = None) -> Signal:
        """Evaluate ``coin`` and persist a new active signal for the user."""
        pair = pair_for(coin)
        accounts.get_user(db, user_id)
        settings = accounts.get_settings(db, user_id)
        strategy = accounts.get_strategy(db, user_id, strategy_id) if strategy_id else None

        prices = self.market_service.get_price_history(coin, HISTORY_DAYS)
        if len(prices) < MIN_HISTORY_DAYS:
            raise MarketDataUnavailable(
                f"Need {MIN_HISTORY_DAYS} days of history for {coin}, got {len(prices)}"
            )
        live_price = self.market_service.get_current_price(coin)

        evaluation = self.engine.evaluate(self.evaluator_key, prices)
        signal = synthesize(
            evaluation, live_price,
            user_id=user_id,
            pair=pair,
            max_leverage=settings.max_leverage,
            strategy=strategy,
            calibration=None if strategy else self.calibration,
        )
        db.add(signal)
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(signal)
        return signal

    # ── Auto-trading cycle ────────────────────────────────────────────────

    def daily_limits_reached(self, db: Session, user: User, settings: Settings) -> bool:
        """True once today's change hits the profit target or the drawdown cap.

        Today's change is measured against the first balance sample of the
        current UTC day.
        """
        day_start = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        first = db.query(BalanceHistory).filter(
            BalanceHistory.user_id == user.id,
            BalanceHistory.timestamp >= day_start,
        ).order_by(BalanceHistory.timestamp.asc()).first()
        if not first or first.balance <= 0:
            return False

        change_pct = (user.balance - first.balance) / first.balance * 100
        if change_pct >= settings.daily_profit_target:
            logger.info(f"User {user.id}: daily profit target reached ({change_pct:+.2f}%)")
            return True
        if change_pct <= -settings.max_daily_drawdown:
            logger.warning(f"User {user.id}: daily drawdown limit hit ({change_pct:+.2f}%)")
            return True
        return False

    def _next_coin(self, user_id: str) -> str:
        coins = list(SUPPORTED_COINS)
        idx = self._rotation.get(user_id, 0)
        self._rotation[user_id] = (idx + 1) % len(coins)
        return coins[idx % len(coins)]

    def run_auto_cycle(self, db: Session) -> List[Signal]:
        """Issue at most one signal per eligible user."""
        created = []
        rows = db.query(User, Settings).join(Settings, Settings.user_id == User.id).filter(
            Settings.auto_trading.is_(True)
        ).all()

        for user, settings in rows:
            strategy = db.query(Strategy).filter(
                Strategy.user_id == user.id, Strategy.active.is_(True)
            ).order_by(Strategy.win_rate.desc()).first()
            if not strategy:
                continue

            active_count = db.query(Signal).filter(
                Signal.user_id == user.id, Signal.status == "active"
            ).count()
            if active_count >= MAX_ACTIVE_SIGNALS:
                logger.debug(f"User {user.id}: {active_count} active signals, skipping")
                continue
            if self.daily_limits_reached(db, user, settings):
                continue

            coin = self._next_coin(user.id)
            try:
                signal = self.generate_signal(db, user.id, coin, strategy_id=strategy.id)
            except MarketDataUnavailable as e:
                logger.warning(f"Auto cycle: no market data for {coin}: {e}")
                continue
            created.append(signal)

        if created:
            logger.info(f"Auto cycle: created {len(created)} signal(s)")
        return created

    # ── Active signal monitor ─────────────────────────────────────────────

    @staticmethod
    def _crossed(signal: Signal, price: float) -> Optional[str]:
        tp = float(signal.tp)
        sl = float(signal.sl)
        if signal.type == LONG:
            if price >= tp:
                return "tp"
            if price <= sl:
                return "sl"
        else:
            if price <= tp:
                return "tp"
            if price >= sl:
                return "sl"
        return None

    def check_active_signals(self, db: Session) -> List[Dict]:
        """Settle every active signal whose TP or SL the live price crossed."""
        settled = []
        prices: Dict[str, Optional[float]] = {}
        active = db.query(Signal).filter(Signal.status == "active").all()

        for signal in active:
            if signal.pair not in prices:
                try:
                    prices[signal.pair] = self.market_service.get_current_price(
                        coin_for_pair(signal.pair)
                    )
                except (InvalidInput, MarketDataUnavailable) as e:
                    logger.warning(f"Monitor: no price for {signal.pair}: {e}")
                    prices[signal.pair] = None
            price = prices[signal.pair]
            if price is None:
                continue

            result = self._crossed(signal, price)
            if not result:
                continue
            try:
                outcome = settle_signal(db, signal.user_id, signal.id, result)
            except SignalAlreadySettled:
                logger.debug(f"Monitor: signal {signal.id} settled concurrently")
                continue
            settled.append({"signal_id": signal.id, "result": result, **outcome.to_dict()})

        return settled
