"""
Market data sources for the stablecoin monitors

HttpDataSource reads a CoinGecko-style /coins/markets endpoint; any network,
status or payload problem surfaces as FetchError. SimulatedDataSource
produces plausible random stablecoin data for offline runs and demos.
"""

import asyncio
import logging
import math
import random
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp

from shared.errors import FetchError
from shared.models import USD_PEG, MarketSnapshot

logger = logging.getLogger(__name__)


class DataSource(ABC):
    """Fetches current market data for an endpoint"""

    @abstractmethod
    async def fetch(self, api_url: str) -> List[MarketSnapshot]:
        """
        Fetch market snapshots from api_url

        Raises:
            FetchError: network, status or parse failure
        """

    async def close(self):
        """Release any held connections"""


def _as_float(entry: Dict[str, Any], key: str, default: Optional[float] = None) -> float:
    value = entry.get(key)
    if value is None:
        if default is None:
            raise FetchError(f"missing field '{key}'")
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise FetchError(f"field '{key}' is not numeric: {value!r}") from None
    if not math.isfinite(number):
        raise FetchError(f"field '{key}' is not finite: {value!r}")
    return number


def parse_markets_payload(payload: Any, peg: float = USD_PEG) -> List[MarketSnapshot]:
    """
    Convert a /coins/markets response into snapshots

    Each entry needs symbol and current_price; supply, market cap and volume
    default to 0 when the API leaves them null.
    """
    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        raise FetchError(f"unexpected payload type {type(payload).__name__}")

    snapshots = []
    for entry in payload:
        if not isinstance(entry, dict):
            raise FetchError(f"unexpected market entry {entry!r}")
        symbol = entry.get("symbol") or entry.get("name")
        if not symbol:
            raise FetchError("market entry without symbol")

        price = _as_float(entry, "current_price")
        snapshots.append(
            MarketSnapshot.from_price(
                name=str(symbol).upper(),
                price=price,
                supply=_as_float(entry, "circulating_supply", 0.0),
                market_cap=_as_float(entry, "market_cap", 0.0),
                volume_24h=_as_float(entry, "total_volume", 0.0),
                peg=peg,
            )
        )
    return snapshots


class HttpDataSource(DataSource):
    """CoinGecko-style HTTP market data source"""

    def __init__(self, timeout: float = 10.0, api_key: str = "", peg: float = USD_PEG):
        self.timeout = timeout
        self.api_key = api_key
        self.peg = peg
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"accept": "application/json"}
            if self.api_key:
                headers["x-cg-demo-api-key"] = self.api_key
            self._session = aiohttp.ClientSession(
                headers=headers, timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def fetch(self, api_url: str) -> List[MarketSnapshot]:
        session = self._get_session()
        try:
            async with session.get(api_url) as response:
                if response.status != 200:
                    raise FetchError(f"HTTP {response.status} from {api_url}")
                payload = await response.json(content_type=None)
        except asyncio.TimeoutError:
            raise FetchError(f"timed out after {self.timeout}s fetching {api_url}") from None
        except aiohttp.ClientError as e:
            raise FetchError(f"request to {api_url} failed: {e}") from e
        except ValueError as e:
            raise FetchError(f"invalid JSON from {api_url}: {e}") from e

        snapshots = parse_markets_payload(payload, peg=self.peg)
        logger.debug(f"Fetched {len(snapshots)} snapshots from {api_url}")
        return snapshots

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class SimulatedDataSource(DataSource):
    """
    Random stablecoin market data

    The coin symbol is taken from the `ids`/`coin` query parameter or the
    last path segment of api_url, so the same targets work against the
    HTTP and simulated sources.
    """

    # Symbol -> approximate circulating supply
    BASE_SUPPLY = {
        "USDT": 110_000_000_000,
        "USDC": 33_000_000_000,
        "DAI": 5_300_000_000,
        "FRAX": 650_000_000,
    }
    ID_TO_SYMBOL = {
        "tether": "USDT",
        "usd-coin": "USDC",
        "dai": "DAI",
        "frax": "FRAX",
    }

    def __init__(self, seed: Optional[int] = None, failure_rate: float = 0.0):
        self.rng = random.Random(seed)
        self.failure_rate = failure_rate

    def _symbol_for(self, api_url: str) -> str:
        query = api_url.split("?", 1)[1] if "?" in api_url else ""
        for part in query.split("&"):
            key, _, value = part.partition("=")
            if key in ("ids", "coin") and value:
                return self.ID_TO_SYMBOL.get(value.lower(), value.upper())
        tail = api_url.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
        return self.ID_TO_SYMBOL.get(tail.lower(), tail.upper())

    async def fetch(self, api_url: str) -> List[MarketSnapshot]:
        await asyncio.sleep(0)
        if self.failure_rate and self.rng.random() < self.failure_rate:
            raise FetchError(f"simulated outage for {api_url}")

        symbol = self._symbol_for(api_url)
        price = self.rng.uniform(0.95, 1.05)
        supply = self.BASE_SUPPLY.get(symbol, 1_000_000_000) * self.rng.uniform(0.98, 1.02)
        market_cap = price * supply
        volume = market_cap * self.rng.uniform(0.01, 0.15)
        return [
            MarketSnapshot.from_price(
                name=symbol,
                price=price,
                supply=supply,
                market_cap=market_cap,
                volume_24h=volume,
            )
        ]
