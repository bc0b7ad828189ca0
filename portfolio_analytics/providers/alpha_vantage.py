"""Alpha Vantage client and market-data adapter used by the price store."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Deque, Literal

import httpx

from portfolio_analytics.config import get_settings

logger = logging.getLogger(__name__)

BASE_URL = "https://www.alphavantage.co/query"
_RATE_LIMIT_KEYS = ("Note", "Information")

OutputSize = Literal["compact", "full"]


class AlphaVantageError(RuntimeError):
    """Raised when Alpha Vantage returns an error payload or the request fails."""


class AlphaVantageRateLimitError(AlphaVantageError):
    """Raised when Alpha Vantage signals that the request quota is exhausted."""


class AlphaVantageClient:
    """Throttled Alpha Vantage client with convenience helpers.

    Calls are spaced by ``min_interval`` seconds and capped at
    ``requests_per_minute`` within any sliding 60 second window. Each call
    reserves its slot synchronously before sleeping, so concurrent callers on
    one event loop never share a lock across an ``await``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        requests_per_minute: int | None = None,
        min_interval: float | None = None,
        timeout: float | None = None,
        client: Any | None = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key or settings.alphavantage_api_key
        self.requests_per_minute = requests_per_minute or settings.alphavantage_requests_per_minute
        self.min_interval = settings.alphavantage_min_interval_seconds if min_interval is None else min_interval
        self.timeout = timeout or settings.alphavantage_timeout_seconds
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None
        self._slots: Deque[float] = deque()
        self._next_slot = 0.0

    async def _throttle(self) -> None:
        loop = asyncio.get_running_loop()
        now = loop.time()
        slot = max(now, self._next_slot)
        while self._slots and self._slots[0] <= slot - 60.0:
            self._slots.popleft()
        if len(self._slots) >= self.requests_per_minute:
            slot = max(slot, self._slots[0] + 60.0)
            self._slots.popleft()
        self._slots.append(slot)
        self._next_slot = slot + self.min_interval
        delay = slot - now
        if delay > 0:
            await asyncio.sleep(delay)

    async def _request(self, params: dict[str, Any]) -> dict[str, Any]:
        await self._throttle()
        query = {**params, "apikey": self.api_key}
        try:
            response = await self._client.get(BASE_URL, params=query, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except AlphaVantageError:
            raise
        except Exception as exc:
            raise AlphaVantageError(f"Alpha Vantage request failed: {exc}") from exc
        if not isinstance(payload, dict):
            raise AlphaVantageError("Unexpected Alpha Vantage payload")
        for key in _RATE_LIMIT_KEYS:
            if key in payload:
                raise AlphaVantageRateLimitError(str(payload[key]))
        if "Error Message" in payload:
            raise AlphaVantageError(str(payload["Error Message"]))
        return payload

    async def daily_series(self, symbol: str, output: OutputSize = "compact") -> dict[str, Any]:
        """Return the raw TIME_SERIES_DAILY payload for ``symbol``."""

        return await self._request(
            {"function": "TIME_SERIES_DAILY", "symbol": symbol, "outputsize": output}
        )

    async def global_quote(self, symbol: str) -> dict[str, Any]:
        """Return the raw GLOBAL_QUOTE payload for ``symbol``."""

        return await self._request({"function": "GLOBAL_QUOTE", "symbol": symbol})

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


_client: AlphaVantageClient | None = None


def get_alpha_vantage_client() -> AlphaVantageClient:
    """Return a process-wide client so every caller shares one throttle."""

    global _client  # noqa: PLW0603 - module level singleton
    if _client is None:
        _client = AlphaVantageClient()
    return _client


@dataclass(frozen=True)
class DailyClose:
    date: date
    close_price: float


@dataclass(frozen=True)
class LatestQuote:
    price: float
    as_of: date


def parse_daily_closes(payload: dict[str, Any]) -> list[DailyClose]:
    """Convert a daily series payload into ascending, positive closes."""

    series = payload.get("Time Series (Daily)", {})
    closes: list[DailyClose] = []
    for day_str, values in series.items():
        try:
            day = datetime.strptime(day_str, "%Y-%m-%d").date()
            close_value = float(values.get("4. close"))
        except (TypeError, ValueError):
            continue
        if close_value <= 0:
            continue
        closes.append(DailyClose(date=day, close_price=close_value))
    closes.sort(key=lambda c: c.date)
    return closes


def parse_global_quote(payload: dict[str, Any]) -> LatestQuote | None:
    quote = payload.get("Global Quote") or {}
    try:
        price = float(quote["05. price"])
        as_of = datetime.strptime(quote["07. latest trading day"], "%Y-%m-%d").date()
    except (KeyError, TypeError, ValueError):
        return None
    if price <= 0:
        return None
    return LatestQuote(price=price, as_of=as_of)


class AlphaVantageMarketData:
    """Market-data provider backed by :class:`AlphaVantageClient`."""

    def __init__(self, client: AlphaVantageClient | None = None) -> None:
        self.client = client or get_alpha_vantage_client()

    async def get_daily_closes(self, ticker: str, output_size: OutputSize = "compact") -> list[DailyClose]:
        payload = await self.client.daily_series(ticker, output=output_size)
        return parse_daily_closes(payload)

    async def get_latest_quote(self, ticker: str) -> LatestQuote | None:
        payload = await self.client.global_quote(ticker)
        quote = parse_global_quote(payload)
        if quote is None:
            logger.info("No quote data returned for %s", ticker)
        return quote


__all__ = [
    "AlphaVantageClient",
    "AlphaVantageError",
    "AlphaVantageRateLimitError",
    "AlphaVantageMarketData",
    "DailyClose",
    "LatestQuote",
    "get_alpha_vantage_client",
    "parse_daily_closes",
    "parse_global_quote",
]
