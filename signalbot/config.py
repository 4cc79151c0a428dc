"""
Application configuration.

Reads environment variables (optionally from a .env file) into a typed,
immutable config object.
"""
import os
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_EVALUATOR = "trend_following"


@dataclass(frozen=True)
class AppConfig:
    """Typed configuration loaded from environment variables."""

    evaluator: str
    coingecko_base_url: str
    market_data_max_retries: int
    auto_trading_interval: int   # seconds, 0 = disabled
    signal_monitor_interval: int  # seconds, 0 = disabled
    calibration_coin: str
    demo_user_id: str
    log_level: str


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value


def load_config(env_path: str = None) -> AppConfig:
    """Build an AppConfig from the environment.

    Raises ``ValueError`` naming the variable when a value cannot be used.
    """
    load_dotenv(dotenv_path=env_path)

    # Imported here so that the evaluator registry stays the single list
    # of valid names.
    from signalbot.services.strategies.models import EVALUATORS

    evaluator = os.getenv("SIGNAL_EVALUATOR", DEFAULT_EVALUATOR).strip()
    if evaluator not in EVALUATORS:
        raise ValueError(
            f"SIGNAL_EVALUATOR must be one of {', '.join(sorted(EVALUATORS))}, "
            f"got {evaluator!r}"
        )

    return AppConfig(
        evaluator=evaluator,
        coingecko_base_url=os.getenv(
            "COINGECKO_BASE_URL", "https://api.coingecko.com/api/v3"
        ),
        market_data_max_retries=max(_int_env("MARKET_DATA_MAX_RETRIES", 3), 1),
        auto_trading_interval=_int_env("AUTO_TRADING_INTERVAL", 300),
        signal_monitor_interval=_int_env("SIGNAL_MONITOR_INTERVAL", 60),
        calibration_coin=os.getenv("CALIBRATION_COIN", "bitcoin"),
        demo_user_id=os.getenv("DEMO_USER_ID", "demo-user-001"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
