"""
Main FastAPI application
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime
import logging
import asyncio
import random
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import BaseModel

from signalbot.config import load_config
from signalbot.database import get_db, init_db, SessionLocal
from signalbot.services import accounts, backtester
from signalbot.services.calibration import DEFAULT_CALIBRATION, calibrate
from signalbot.services.errors import (
    EntityNotFound, InvalidInput, MarketDataUnavailable, SignalAlreadySettled,
)
from signalbot.services.market_data import SUPPORTED_COINS, MarketDataService
from signalbot.services.settlement import settle_signal
from signalbot.services.signal_agent import SignalAgentService
from signalbot.services.strategies import EVALUATORS, StrategyEngine

config = load_config()

# Configure logging
logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))
logger = logging.getLogger(__name__)

# Initialize services
market_service = MarketDataService(
    base_url=config.coingecko_base_url,
    max_retries=config.market_data_max_retries,
)
strategy_engine = StrategyEngine()
signal_agent = SignalAgentService(
    market_service,
    engine=strategy_engine,
    evaluator_key=config.evaluator,
    calibration=DEFAULT_CALIBRATION,
)

# Scheduler for background tasks
scheduler = AsyncIOScheduler()

CALIBRATION_DAYS = 365
REPLAY_DAYS = 365


# Pydantic models for API
class UserCreate(BaseModel):
    username: str
    password: str
    email: Optional[str] = None
    balance: float = 100.0


class BalanceUpdate(BaseModel):
    balance: float


class SignalCreate(BaseModel):
    pair: str
    type: str
    entry: str
    tp: str
    sl: str
    confidence: int
    leverage: int = 1
    strategy_id: Optional[str] = None


class SignalGenerate(BaseModel):
    coin: str = "bitcoin"
    strategy_id: Optional[str] = None


class SignalStatusUpdate(BaseModel):
    status: str
    result: Optional[str] = None


class SettleRequest(BaseModel):
    result: str
    risk_fraction: Optional[float] = None


class StrategyUpdate(BaseModel):
    active: Optional[bool] = None
    risk: Optional[str] = None
    min_leverage: Optional[int] = None
    max_leverage: Optional[int] = None


class SettingsUpdate(BaseModel):
    risk_per_trade: Optional[float] = None
    max_leverage: Optional[int] = None
    max_daily_drawdown: Optional[float] = None
    daily_profit_target: Optional[float] = None
    compound_profits: Optional[bool] = None
    auto_trading: Optional[bool] = None


class SyntheticBacktestRequest(BaseModel):
    leverage: Optional[int] = None     # None = strategy's max leverage
    trials: int = backtester.SYNTHETIC_TRIALS
    seed: Optional[int] = None


class ReplayRequest(BaseModel):
    coin: str = "bitcoin"
    evaluator: Optional[str] = None    # None = deployment evaluator
    strategy_id: Optional[str] = None
    leverage: int = 3
    risk_per_trade: float = 10.0
    days: int = REPLAY_DAYS


def current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity from the X-User-Id header, else the demo account."""
    return x_user_id or config.demo_user_id


# ── Background jobs ───────────────────────────────────────────────────────

def _run_calibration():
    try:
        prices = market_service.get_price_history(config.calibration_coin, CALIBRATION_DAYS)
    except MarketDataUnavailable as e:
        logger.warning(f"Calibration skipped, using defaults: {e}")
        return
    signal_agent.calibration = calibrate(prices)


async def run_auto_trading_cycle():
    """Background task: one signal per eligible user."""
    def _sync_cycle():
        db = SessionLocal()
        try:
            return len(signal_agent.run_auto_cycle(db))
        except Exception as e:
            logger.error(f"Error in auto-trading cycle: {e}")
            return 0
        finally:
            db.close()

    created = await asyncio.to_thread(_sync_cycle)
    logger.debug(f"Auto-trading cycle done ({created} new signals)")


async def run_signal_monitor():
    """Background task: settle active signals whose TP/SL was crossed."""
    def _sync_monitor():
        db = SessionLocal()
        try:
            return signal_agent.check_active_signals(db)
        except Exception as e:
            logger.error(f"Signal monitor error: {e}")
            return []
        finally:
            db.close()

    settled = await asyncio.to_thread(_sync_monitor)
    for item in settled:
        logger.info(f"Monitor settled signal {item['signal_id']} [{item['result']}]")


# ── Lifespan ──────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup → yield → shutdown."""
    logger.info("Starting SignalBot...")

    init_db()
    db = SessionLocal()
    try:
        accounts.ensure_demo_account(db, config.demo_user_id)
    finally:
        db.close()

    await asyncio.to_thread(_run_calibration)

    jobs = []
    if config.auto_trading_interval > 0:
        scheduler.add_job(run_auto_trading_cycle, 'interval',
                          seconds=config.auto_trading_interval, id='auto_trading_cycle')
        jobs.append(f"Auto-trading: {config.auto_trading_interval}s")
    if config.signal_monitor_interval > 0:
        scheduler.add_job(run_signal_monitor, 'interval',
                          seconds=config.signal_monitor_interval, id='signal_monitor')
        jobs.append(f"Signal monitor: {config.signal_monitor_interval}s")
    if jobs:
        scheduler.start()

    logger.info(f"Application started - evaluator: {config.evaluator} | "
                f"{' | '.join(jobs) or 'scheduler disabled'}")

    yield

    logger.info("Shutting down...")
    if scheduler.running:
        scheduler.shutdown()


# Initialize FastAPI app with lifespan
app = FastAPI(title="SignalBot - Trading Signal Engine", version="1.0.0", lifespan=lifespan)


# ── Error mapping ─────────────────────────────────────────────────────────

@app.exception_handler(EntityNotFound)
async def _not_found(request: Request, exc: EntityNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidInput)
async def _invalid_input(request: Request, exc: InvalidInput):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(SignalAlreadySettled)
async def _already_settled(request: Request, exc: SignalAlreadySettled):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(MarketDataUnavailable)
async def _market_unavailable(request: Request, exc: MarketDataUnavailable):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# ── Users ─────────────────────────────────────────────────────────────────

@app.post("/api/users", status_code=201)
def create_user(req: UserCreate, db: Session = Depends(get_db)):
    """Create an account with default settings and strategy presets"""
    user = accounts.create_account(db, req.username, req.password,
                                   email=req.email, balance=req.balance)
    return accounts.user_to_dict(user)


@app.get("/api/user")
def get_user(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    return accounts.user_to_dict(accounts.get_user(db, user_id))


@app.put("/api/user/balance")
def update_balance(req: BalanceUpdate, user_id: str = Depends(current_user_id),
                   db: Session = Depends(get_db)):
    """Manual balance edit (also appends a history sample)"""
    return accounts.user_to_dict(accounts.set_balance(db, user_id, req.balance))


@app.post("/api/user/reset")
def reset_user(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    """Purge signals and balance history, restore the default balance"""
    return accounts.user_to_dict(accounts.reset_account(db, user_id))


# ── Signals ───────────────────────────────────────────────────────────────

@app.get("/api/signals")
def list_signals(limit: int = 20, status: Optional[str] = None,
                 user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    if not (1 <= limit <= 500):
        raise HTTPException(status_code=400, detail="limit must be 1-500")
    return [accounts.signal_to_dict(s)
            for s in accounts.list_signals(db, user_id, limit=limit, status=status)]


@app.post("/api/signals", status_code=201)
def create_signal(req: SignalCreate, user_id: str = Depends(current_user_id),
                  db: Session = Depends(get_db)):
    """Persist a manually entered signal"""
    signal = accounts.create_manual_signal(db, user_id, req.model_dump())
    return accounts.signal_to_dict(signal)


@app.post("/api/signals/generate", status_code=201)
def generate_signal(req: SignalGenerate, user_id: str = Depends(current_user_id),
                    db: Session = Depends(get_db)):
    """Evaluate live market data and issue a new signal"""
    if req.coin not in SUPPORTED_COINS:
        raise HTTPException(status_code=400, detail=f"Unsupported coin: {req.coin}")
    signal = signal_agent.generate_signal(db, user_id, req.coin, strategy_id=req.strategy_id)
    return accounts.signal_to_dict(signal)


@app.patch("/api/signals/{signal_id}")
def update_signal_status(signal_id: str, req: SignalStatusUpdate,
                         user_id: str = Depends(current_user_id),
                         db: Session = Depends(get_db)):
    """Status update. Completing a signal goes through settlement."""
    if req.status != "completed":
        raise HTTPException(status_code=400, detail="Only status 'completed' is supported")
    if req.result is None:
        raise HTTPException(status_code=400, detail="result is required to complete a signal")
    outcome = settle_signal(db, user_id, signal_id, req.result)
    return outcome.to_dict()


@app.post("/api/signals/{signal_id}/settle")
def settle(signal_id: str, req: SettleRequest, user_id: str = Depends(current_user_id),
           db: Session = Depends(get_db)):
    outcome = settle_signal(db, user_id, signal_id, req.result, risk_fraction=req.risk_fraction)
    return outcome.to_dict()


# ── Strategies / evaluators ───────────────────────────────────────────────

@app.get("/api/strategies")
def list_strategies(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    return [accounts.strategy_to_dict(s) for s in accounts.list_strategies(db, user_id)]


@app.patch("/api/strategies/{strategy_id}")
def update_strategy(strategy_id: str, req: StrategyUpdate,
                    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    strategy = accounts.update_strategy(db, user_id, strategy_id, req.model_dump())
    return accounts.strategy_to_dict(strategy)


@app.get("/api/evaluators")
def list_evaluators():
    """Registered signal evaluators and the one this deployment uses"""
    return {"active": signal_agent.evaluator_key, "evaluators": strategy_engine.describe()}


# ── Settings / balance history ────────────────────────────────────────────

@app.get("/api/settings")
def get_settings(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    return accounts.settings_to_dict(accounts.get_settings(db, user_id))


@app.patch("/api/settings")
def update_settings(req: SettingsUpdate, user_id: str = Depends(current_user_id),
                    db: Session = Depends(get_db)):
    settings = accounts.update_settings(db, user_id, req.model_dump())
    return accounts.settings_to_dict(settings)


@app.get("/api/balance-history")
def balance_history(limit: Optional[int] = None, user_id: str = Depends(current_user_id),
                    db: Session = Depends(get_db)):
    if limit is not None and limit < 1:
        raise HTTPException(status_code=400, detail="limit must be positive")
    return [accounts.balance_sample_to_dict(h)
            for h in accounts.get_balance_history(db, user_id, limit=limit)]


# ── Backtesting ───────────────────────────────────────────────────────────

@app.post("/api/strategies/{strategy_id}/backtest")
def run_synthetic_backtest(strategy_id: str,
                           req: Optional[SyntheticBacktestRequest] = None,
                           user_id: str = Depends(current_user_id),
                           db: Session = Depends(get_db)):
    """Synthetic backtest from the strategy's win rate; results are written back"""
    req = req or SyntheticBacktestRequest()
    if not (1 <= req.trials <= 10000):
        raise HTTPException(status_code=400, detail="trials must be 1-10000")
    strategy = accounts.get_strategy(db, user_id, strategy_id)
    leverage = req.leverage or strategy.max_leverage
    if leverage < 1:
        raise HTTPException(status_code=400, detail="leverage must be >= 1")

    rng = random.Random(req.seed) if req.seed is not None else None
    result = backtester.run_synthetic(strategy.win_rate, leverage, trials=req.trials, rng=rng)
    backtester.apply_to_strategy(db, strategy, result)
    return {**result.to_dict(), "strategy": accounts.strategy_to_dict(strategy)}


@app.post("/api/backtest/replay")
async def run_replay_backtest(req: ReplayRequest, user_id: str = Depends(current_user_id),
                              db: Session = Depends(get_db)):
    """Replay real daily history through an evaluator. May take several seconds."""
    if req.coin not in SUPPORTED_COINS:
        raise HTTPException(status_code=400, detail=f"Unsupported coin: {req.coin}")
    evaluator_key = req.evaluator or signal_agent.evaluator_key
    if evaluator_key not in EVALUATORS:
        raise HTTPException(status_code=400, detail=f"Unknown evaluator: {evaluator_key}")
    if not (1 <= req.leverage <= 125):
        raise HTTPException(status_code=400, detail="Leverage must be 1-125")
    if not (0 < req.risk_per_trade <= 100):
        raise HTTPException(status_code=400, detail="risk_per_trade must be in (0, 100]")
    if not (1 <= req.days <= 365):
        raise HTTPException(status_code=400, detail="days must be between 1 and 365")

    def _sync_replay():
        if req.strategy_id:
            strategy = accounts.get_strategy(db, user_id, req.strategy_id)
            name, win_rate = strategy.name, strategy.win_rate
        else:
            name, win_rate = EVALUATORS[evaluator_key].name, 0

        history = market_service.get_price_history_with_dates(req.coin, req.days)
        return backtester.run_replay(
            [price for _, price in history],
            strategy_engine.get(evaluator_key),
            strategy_name=name,
            strategy_win_rate=win_rate,
            leverage=req.leverage,
            risk_per_trade=req.risk_per_trade,
            dates=[day for day, _ in history],
        )

    result = await asyncio.to_thread(_sync_replay)
    return {**result.to_dict(), "coin": req.coin, "evaluator": evaluator_key}


@app.get("/api/health")
def health_check():
    """Check API and service health"""
    return {
        "status": "ok",
        "evaluator": signal_agent.evaluator_key,
        "calibration": signal_agent.calibration.to_dict() if signal_agent.calibration else None,
        "market_service": market_service.health_check(),
        "scheduler": scheduler.running,
        "timestamp": datetime.utcnow().isoformat()
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
