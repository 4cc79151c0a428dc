"""
Market data service - daily closes and spot prices from the CoinGecko API
"""
import requests
import logging
import time
from typing import Dict, List, Tuple
from datetime import datetime, timedelta, timezone
from threading import Lock

from signalbot.services.errors import InvalidInput, MarketDataUnavailable

logger = logging.getLogger(__name__)

SUPPORTED_COINS = {
    "bitcoin": "BTC/USDT",
    "ethereum": "ETH/USDT",
    "binancecoin": "BNB/USDT",
    "cardano": "ADA/USDT",
    "solana": "SOL/USDT",
    "ripple": "XRP/USDT",
    "polkadot": "DOT/USDT",
    "dogecoin": "DOGE/USDT",
}


def pair_for(coin: str) -> str:
    pair = SUPPORTED_COINS.get(coin)
    if not pair:
        raise InvalidInput(f"Unsupported coin: {coin}")
    return pair


def coin_for_pair(pair: str) -> str:
    for coin, p in SUPPORTED_COINS.items():
        if p == pair:
            return coin
    raise InvalidInput(f"Unsupported pair: {pair}")


class RateLimiter:
    """Simple rate limiter for API calls"""

    def __init__(self, max_calls: int = 10, period: float = 60.0):
        self.max_calls = max_calls
        self.period = period
        self._calls: List[float] = []
        self._lock = Lock()

    def wait_if_needed(self):
        """Block until we can make another API call"""
        with self._lock:
            now = time.time()
            self._calls = [t for t in self._calls if now - t < self.period]

            if len(self._calls) >= self.max_calls:
                sleep_time = self.period - (now - self._calls[0]) + 0.1
                if sleep_time > 0:
                    logger.info(f"Rate limit reached, waiting {sleep_time:.1f}s")
                    time.sleep(sleep_time)

            self._calls.append(time.time())


class CacheEntry:
    """Cache entry with TTL"""

    def __init__(self, data, ttl_seconds: int):
        self.data = data
        self.expires_at = datetime.now() + timedelta(seconds=ttl_seconds)

    @property
    def is_valid(self) -> bool:
        return datetime.now() < self.expires_at


class MarketDataService:
    """Fetches real price data from CoinGecko.

    Every public method either returns real data or raises
    ``MarketDataUnavailable``.
    """

    PRICES_TTL = 60
    HISTORICAL_TTL = 900

    def __init__(self, base_url: str = "https://api.coingecko.com/api/v3",
                 max_retries: int = 3, session: requests.Session = None,
                 rate_limiter: RateLimiter = None):
        self.base_url = base_url.rstrip("/")
        self._max_retries = max(1, max_retries)
        self._cache: Dict[str, CacheEntry] = {}
        self._rate_limiter = rate_limiter or RateLimiter(max_calls=10, period=60)
        self._session = session or requests.Session()
        self._session.headers.update({
            "Accept": "application/json",
            "User-Agent": "SignalBot/1.0"
        })
        self._consecutive_failures = 0

    # ── Cache helpers ─────────────────────────────────────────────────────

    def _get_cache(self, key: str):
        entry = self._cache.get(key)
        if entry and entry.is_valid:
            return entry.data
        return None

    def _set_cache(self, key: str, data, ttl: int):
        self._cache[key] = CacheEntry(data, ttl)

    # ── Core API request with retry + rate‑limiting ───────────────────────

    def _api_request(self, endpoint: str, params: dict = None, timeout: int = 15) -> dict:
        url = f"{self.base_url}{endpoint}"
        last_error = "no attempt made"

        for attempt in range(self._max_retries):
            try:
                self._rate_limiter.wait_if_needed()
                response = self._session.get(url, params=params, timeout=timeout)

                if response.status_code == 429:
                    retry_after = int(response.headers.get("Retry-After", 60))
                    logger.warning(f"CoinGecko rate limited (429). Waiting {retry_after}s...")
                    last_error = "rate limited (429)"
                    time.sleep(retry_after)
                    continue

                response.raise_for_status()
                self._consecutive_failures = 0
                return response.json()

            except requests.exceptions.Timeout:
                last_error = "timeout"
                logger.warning(f"CoinGecko timeout (attempt {attempt + 1}/{self._max_retries})")
            except requests.exceptions.ConnectionError:
                last_error = "connection error"
                logger.warning(f"CoinGecko connection error (attempt {attempt + 1}/{self._max_retries})")
            except requests.exceptions.HTTPError as e:
                last_error = str(e)
                logger.warning(f"CoinGecko HTTP error: {e} (attempt {attempt + 1}/{self._max_retries})")
            except ValueError as e:
                last_error = f"invalid JSON: {e}"
                logger.error(f"CoinGecko returned invalid JSON for {endpoint}: {e}")
                break

            if attempt < self._max_retries - 1:
                wait = 2 ** (attempt + 1)
                logger.info(f"Retrying in {wait}s...")
                time.sleep(wait)

        self._consecutive_failures += 1
        logger.error(f"CoinGecko API failed after {self._max_retries} retries "
                     f"(consecutive failures: {self._consecutive_failures})")
        raise MarketDataUnavailable(f"CoinGecko request {endpoint} failed: {last_error}")

    # ── Prices ────────────────────────────────────────────────────────────

    def get_current_price(self, coin: str) -> float:
        """Current USD price for a supported coin."""
        pair_for(coin)
        cache_key = f"price_{coin}"
        cached = self._get_cache(cache_key)
        if cached:
            return cached

        data = self._api_request("/simple/price", params={
            "ids": coin,
            "vs_currencies": "usd"
        })
        price = (data or {}).get(coin, {}).get("usd")
        if not price or price <= 0:
            raise MarketDataUnavailable(f"No current price for {coin}")

        price = float(price)
        self._set_cache(cache_key, price, self.PRICES_TTL)
        return price

    # ── Historical Prices ─────────────────────────────────────────────────

    def get_price_history_with_dates(self, coin: str, days: int = 365) -> List[Tuple[str, float]]:
        """Daily ``(ISO date, close)`` pairs, oldest first."""
        pair_for(coin)
        if days < 1:
            raise InvalidInput(f"days must be >= 1, got {days}")

        cache_key = f"historical_{coin}_{days}"
        cached = self._get_cache(cache_key)
        if cached:
            return cached

        data = self._api_request(f"/coins/{coin}/market_chart", params={
            "vs_currency": "usd",
            "days": days,
            "interval": "daily"
        })

        points = []
        for ts, price in (data or {}).get("prices", []):
            if price is None:
                continue
            points.append((datetime.fromtimestamp(ts / 1000, tz=timezone.utc).date().isoformat(), float(price)))

        if not points:
            raise MarketDataUnavailable(f"Empty price history for {coin}")

        self._set_cache(cache_key, points, self.HISTORICAL_TTL)
        logger.debug(f"Fetched {len(points)} daily prices for {coin}")
        return points

    def get_price_history(self, coin: str, days: int = 365) -> List[float]:
        """Daily closes, oldest first."""
        return [price for _, price in self.get_price_history_with_dates(coin, days)]

    # ── Health Check ──────────────────────────────────────────────────────

    def health_check(self) -> Dict:
        """Check API connectivity and return status"""
        try:
            self._api_request("/ping")
            status = "ok"
        except MarketDataUnavailable:
            status = "degraded"
        return {
            "status": status,
            "api": "CoinGecko",
            "consecutive_failures": self._consecutive_failures,
            "cache_entries": len(self._cache)
        }
