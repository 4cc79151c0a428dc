"""
Backtesting Engine
==================
Two simulators that estimate how a strategy would have performed:

- Synthetic: Bernoulli trials driven by a strategy's nominal win rate.
- Replay: walks a real daily price series through an evaluator, opening
  and closing one position at a time.

Both start from a notional balance of 100 and report the same aggregate
metrics. Neither touches the database; ``apply_to_strategy`` writes a
synthetic result back onto a Strategy row.
"""
import logging
import random
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from signalbot.models.database import Strategy
from signalbot.services.strategies.base import BaseEvaluator
from signalbot.services.strategies.models import LONG

logger = logging.getLogger(__name__)

INITIAL_BALANCE = 100.0
SYNTHETIC_TRIALS = 100

# Synthetic per-trade magnitude ranges (percent, before leverage / 10 scaling)
WIN_MOVE_RANGE = (2.0, 3.0)
LOSS_MOVE_RANGE = (1.0, 1.5)

# Replay parameters
WARMUP_DAYS = 50
MIN_REPLAY_PRICES = 50
ENTRY_CONFIDENCE = 61
PROFIT_LOCK_DAYS = 5
PROFIT_LOCK_MOVE_PCT = 0.5
MAX_HOLDING_DAYS = 30
SAMPLE_TRADES = 10

PROFIT_FACTOR_NO_LOSSES = 999.0


# ── Data Classes ────────────────────────────────────────────────────────────

@dataclass
class BacktestResult:
    """Aggregate metrics shared by both simulators."""
    win_rate: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    initial_balance: float
    final_balance: float
    total_profit: float
    profit_percentage: float
    profit_factor: float
    max_drawdown: float
    avg_win_percentage: float
    avg_loss_percentage: float

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class ReplayTrade:
    entry_date: str
    entry_price: float
    exit_date: str
    exit_price: float
    type: str
    pnl_percentage: float
    profit_loss: float
    reason: str = ""


@dataclass
class ReplayResult(BacktestResult):
    strategy_name: str = ""
    trades: List[ReplayTrade] = field(default_factory=list)


# ── Shared metric helpers ───────────────────────────────────────────────────

def _profit_factor(avg_win: float, wins: int, avg_loss: float, losses: int) -> float:
    if wins == 0:
        return 0.0
    if losses == 0 or avg_loss == 0:
        return PROFIT_FACTOR_NO_LOSSES
    return (avg_win * wins) / (avg_loss * losses)


class _DrawdownTracker:
    """Running peak balance and the worst peak-to-trough drop in percent."""

    def __init__(self, balance: float):
        self.peak = balance
        self.max_drawdown = 0.0

    def update(self, balance: float):
        if balance > self.peak:
            self.peak = balance
        if self.peak > 0:
            dd = (self.peak - balance) / self.peak * 100
            if dd > self.max_drawdown:
                self.max_drawdown = dd


def _summarize(balance: float, wins: int, losses: int,
               win_moves: float, loss_moves: float,
               max_drawdown: float, empty_win_rate: float = 0.0) -> Dict:
    total = wins + losses
    avg_win = win_moves / wins if wins else 0.0
    avg_loss = loss_moves / losses if losses else 0.0
    total_profit = balance - INITIAL_BALANCE
    return dict(
        win_rate=round(wins / total * 100, 2) if total else empty_win_rate,
        total_trades=total,
        winning_trades=wins,
        losing_trades=losses,
        initial_balance=INITIAL_BALANCE,
        final_balance=round(balance, 2),
        total_profit=round(total_profit, 2),
        profit_percentage=round(total_profit / INITIAL_BALANCE * 100, 2),
        profit_factor=round(_profit_factor(avg_win, wins, avg_loss, losses), 2),
        max_drawdown=round(max_drawdown, 2),
        avg_win_percentage=round(avg_win, 2),
        avg_loss_percentage=round(avg_loss, 2),
    )


# ── Synthetic ───────────────────────────────────────────────────────────────

def run_synthetic(win_rate: float, leverage: int,
                  trials: int = SYNTHETIC_TRIALS,
                  rng: Optional[random.Random] = None) -> BacktestResult:
    """Simulate ``trials`` trades that win with probability ``win_rate`` %.

    Each win grows the balance by ``uniform(2, 3) * leverage / 10`` percent
    and each loss shrinks it by ``uniform(1, 1.5) * leverage / 10`` percent.
    """
    rng = rng or random.Random()
    scale = leverage / 10
    balance = INITIAL_BALANCE
    tracker = _DrawdownTracker(balance)
    wins = losses = 0
    win_moves = loss_moves = 0.0

    for _ in range(trials):
        if rng.random() * 100 < win_rate:
            move = rng.uniform(*WIN_MOVE_RANGE) * scale
            balance *= 1 + move / 100
            wins += 1
            win_moves += move
        else:
            move = rng.uniform(*LOSS_MOVE_RANGE) * scale
            balance *= 1 - move / 100
            losses += 1
            loss_moves += move
        tracker.update(balance)

    result = BacktestResult(**_summarize(balance, wins, losses, win_moves,
                                         loss_moves, tracker.max_drawdown))
    logger.info(
        f"Synthetic backtest ({win_rate}% nominal, {leverage}x): "
        f"{result.winning_trades}W/{result.losing_trades}L, "
        f"balance {result.final_balance:.2f}, DD {result.max_drawdown:.1f}%"
    )
    return result


def apply_to_strategy(db: Session, strategy: Strategy, result: BacktestResult) -> Strategy:
    """Overwrite the strategy's reported metrics with a backtest result."""
    strategy.win_rate = int(round(result.win_rate))
    strategy.profit_factor = result.profit_factor
    strategy.max_drawdown = result.max_drawdown
    strategy.avg_profit = result.avg_win_percentage
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(strategy)
    logger.info(f"Strategy {strategy.name}: metrics updated from backtest "
                f"(win rate {strategy.win_rate}%, PF {strategy.profit_factor})")
    return strategy


# ── Replay ──────────────────────────────────────────────────────────────────

@dataclass
class _OpenPosition:
    direction: str
    entry_price: float
    entry_index: int
    confidence: int


def _default_dates(count: int) -> List[str]:
    """Daily ISO dates ending today, one per price."""
    today = date.today()
    return [(today - timedelta(days=count - 1 - i)).isoformat() for i in range(count)]


def run_replay(prices: List[float], evaluator: BaseEvaluator, *,
               strategy_name: str, strategy_win_rate: float,
               leverage: int = 3, risk_per_trade: float = 10,
               dates: Optional[List[str]] = None) -> ReplayResult:
    """Replay a daily close series (oldest first) through ``evaluator``.

    At each day without an open position the evaluator sees the trailing
    51 prices; confidence above 61 opens a position in its direction. An
    open position closes at the take-profit band, the stop-loss band, a
    profit lock after 5 days in profit, or the 30-day time stop.
    """
    if len(prices) < MIN_REPLAY_PRICES:
        logger.warning(f"Replay {strategy_name}: only {len(prices)} prices, skipping")
        return ReplayResult(**_summarize(INITIAL_BALANCE, 0, 0, 0.0, 0.0, 0.0,
                                         empty_win_rate=strategy_win_rate),
                            strategy_name=strategy_name)

    if dates is None or len(dates) != len(prices):
        dates = _default_dates(len(prices))

    scale = leverage / 10
    sl_pct = 1.0 * scale
    balance = INITIAL_BALANCE
    tracker = _DrawdownTracker(balance)
    wins = losses = 0
    win_moves = loss_moves = 0.0
    trades: List[ReplayTrade] = []
    position: Optional[_OpenPosition] = None

    for i in range(WARMUP_DAYS, len(prices)):
        price = prices[i]

        if position is None:
            evaluation = evaluator.evaluate(prices[max(0, i - WARMUP_DAYS):i + 1])
            if evaluation.confidence > ENTRY_CONFIDENCE:
                position = _OpenPosition(evaluation.direction, price, i,
                                         evaluation.confidence)
                continue

        if position is not None:
            held = i - position.entry_index
            is_long = position.direction == LONG
            entry = position.entry_price
            tp_pct = (2 + (position.confidence - 55) / 25) * scale
            move = ((price - entry) if is_long else (entry - price)) / entry * 100

            exit_price = None
            if move >= tp_pct:
                exit_price, reason = entry * (1 + tp_pct / 100 if is_long else 1 - tp_pct / 100), "tp"
            elif move <= -sl_pct:
                exit_price, reason = entry * (1 - sl_pct / 100 if is_long else 1 + sl_pct / 100), "sl"
            elif held >= PROFIT_LOCK_DAYS and move > PROFIT_LOCK_MOVE_PCT:
                exit_price, reason = price, "profit_lock"
            elif held >= MAX_HOLDING_DAYS:
                exit_price, reason = price, "time_stop"

            if exit_price is not None:
                realized = ((exit_price - entry) if is_long else (entry - exit_price)) / entry * 100
                profit_loss = balance * risk_per_trade / 100 * leverage * realized / 100
                balance += profit_loss
                if realized > 0:
                    wins += 1
                    win_moves += realized
                else:
                    losses += 1
                    loss_moves += abs(realized)
                trades.append(ReplayTrade(
                    entry_date=dates[position.entry_index],
                    entry_price=round(entry, 2),
                    exit_date=dates[i],
                    exit_price=round(exit_price, 2),
                    type=position.direction,
                    pnl_percentage=round(realized, 2),
                    profit_loss=round(profit_loss, 2),
                    reason=reason,
                ))
                position = None

        tracker.update(balance)

    result = ReplayResult(
        **_summarize(balance, wins, losses, win_moves, loss_moves,
                     tracker.max_drawdown, empty_win_rate=strategy_win_rate),
        strategy_name=strategy_name,
        trades=trades[:SAMPLE_TRADES],
    )
    logger.info(
        f"Replay {strategy_name} over {len(prices)} days ({leverage}x): "
        f"{result.total_trades} trades, {result.win_rate:.0f}% win rate, "
        f"balance {result.final_balance:.2f}, DD {result.max_drawdown:.1f}%"
    )
    return result
