"""Historical price store backed by a persistent cache and a market-data provider.

Reads go through :meth:`HistoricalPriceStore.refresh` first: a ticker with no
cached rows is loaded with its full history, a stale ticker is topped up from a
compact window, and rows already persisted are never overwritten by a refresh.
Provider failures and rate limits degrade to whatever is already cached.
"""

from __future__ import annotations

import asyncio
import logging
from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Iterable, Mapping, Protocol, Sequence
from zoneinfo import ZoneInfo

from portfolio_analytics.config import get_settings
from portfolio_analytics.providers.alpha_vantage import (
    AlphaVantageError,
    AlphaVantageRateLimitError,
    DailyClose,
    LatestQuote,
    OutputSize,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoricalPricePoint:
    ticker: str
    date: date
    close_price: float


class PriceSource(str, Enum):
    """Where a valuation price came from."""

    HISTORICAL = "historical"
    EARLIEST = "earliest"
    FALLBACK = "fallback"
    LIVE = "live"


class RefreshStatus(str, Enum):
    FRESH = "fresh"
    FILLED = "filled"
    RATE_LIMITED = "rate_limited"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ResolvedPrice:
    price: float
    source: PriceSource
    as_of: date | None = None


class PriceRepository(Protocol):
    """Durable ``(ticker, date) -> close`` cache."""

    async def latest_date(self, ticker: str) -> date | None:
        ...

    async def fetch_range(
        self, ticker: str, start: date | None, end: date | None
    ) -> list[HistoricalPricePoint]:
        ...

    async def insert_new(self, points: Sequence[HistoricalPricePoint]) -> int:
        """Insert ``points``, leaving rows whose ``(ticker, date)`` is already stored untouched."""
        ...


class MarketDataProvider(Protocol):
    async def get_daily_closes(self, ticker: str, output_size: OutputSize = "compact") -> list[DailyClose]:
        ...

    async def get_latest_quote(self, ticker: str) -> LatestQuote | None:
        ...


class InMemoryPriceRepository:
    """Price cache kept in a dict, for tests and offline runs."""

    def __init__(self, prices: Mapping[str, Mapping[date, float]] | None = None) -> None:
        self._prices: dict[str, dict[date, float]] = {}
        for ticker, series in (prices or {}).items():
            self._prices[ticker] = {d: float(v) for d, v in series.items()}

    async def latest_date(self, ticker: str) -> date | None:
        series = self._prices.get(ticker)
        return max(series) if series else None

    async def fetch_range(
        self, ticker: str, start: date | None, end: date | None
    ) -> list[HistoricalPricePoint]:
        series = self._prices.get(ticker, {})
        return [
            HistoricalPricePoint(ticker=ticker, date=d, close_price=series[d])
            for d in sorted(series)
            if (start is None or d >= start) and (end is None or d <= end)
        ]

    async def insert_new(self, points: Sequence[HistoricalPricePoint]) -> int:
        inserted = 0
        for point in points:
            series = self._prices.setdefault(point.ticker, {})
            if point.date not in series:
                series[point.date] = point.close_price
                inserted += 1
        return inserted


class PriceSeries:
    """Ascending closes for one ticker with on-or-before lookups."""

    def __init__(self, ticker: str, points: Iterable[HistoricalPricePoint]) -> None:
        self.ticker = ticker
        ordered = sorted(points, key=lambda p: p.date)
        self._dates = [p.date for p in ordered]
        self._closes = [p.close_price for p in ordered]

    def __len__(self) -> int:
        return len(self._dates)

    def resolve(self, day: date) -> ResolvedPrice | None:
        """Latest close on or before ``day``; the earliest close when none precede it."""

        if not self._dates:
            return None
        idx = bisect_right(self._dates, day)
        if idx > 0:
            return ResolvedPrice(self._closes[idx - 1], PriceSource.HISTORICAL, self._dates[idx - 1])
        return ResolvedPrice(self._closes[0], PriceSource.EARLIEST, self._dates[0])


class HistoricalPriceStore:
    """Gap-filling price cache.

    A single instance is meant to live for one run (a request or a job): each
    ticker is refreshed at most once, and after the provider reports a rate
    limit no further provider calls are issued by this instance.
    """

    def __init__(
        self,
        repository: PriceRepository,
        provider: MarketDataProvider | None = None,
        *,
        timezone: str | None = None,
        compact_max_gap_days: int | None = None,
        today: Callable[[], date] | None = None,
    ) -> None:
        settings = get_settings()
        self.repository = repository
        self.provider = provider
        self.timezone = ZoneInfo(timezone or settings.timezone)
        self.compact_max_gap_days = (
            settings.price_compact_max_gap_days if compact_max_gap_days is None else compact_max_gap_days
        )
        self._today = today
        self._refreshed: dict[str, RefreshStatus] = {}
        # One provider call in flight at a time; a rate limit seen by one
        # caller must be visible to every caller still waiting.
        self._provider_lock = asyncio.Lock()
        self.rate_limited = False

    def today(self) -> date:
        if self._today is not None:
            return self._today()
        return datetime.now(self.timezone).date()

    def yesterday(self) -> date:
        return self.today() - timedelta(days=1)

    async def get_latest_stored_date(self, ticker: str) -> date | None:
        return await self.repository.latest_date(ticker)

    async def store(self, ticker: str, points: Iterable[HistoricalPricePoint | DailyClose]) -> int:
        """Persist ``points`` for ``ticker``; rows already stored for a date are kept."""

        normalized: list[HistoricalPricePoint] = []
        for point in points:
            if point.close_price <= 0:
                raise ValueError(f"close_price must be > 0 for {ticker} on {point.date}")
            normalized.append(HistoricalPricePoint(ticker=ticker, date=point.date, close_price=float(point.close_price)))
        if not normalized:
            return 0
        return await self.repository.insert_new(normalized)

    async def refresh(self, ticker: str) -> RefreshStatus:
        """Fill missing history for ``ticker`` from the provider, at most once per run."""

        if ticker in self._refreshed:
            return self._refreshed[ticker]
        status = await self._refresh(ticker)
        if status is not RefreshStatus.SKIPPED:
            self._refreshed[ticker] = status
        return status

    async def _refresh(self, ticker: str) -> RefreshStatus:
        if self.provider is None:
            return RefreshStatus.FRESH
        latest = await self.get_latest_stored_date(ticker)
        if latest is not None and latest >= self.yesterday():
            return RefreshStatus.FRESH
        output_size: OutputSize = "full"
        if latest is not None and (self.today() - latest).days <= self.compact_max_gap_days:
            output_size = "compact"
        async with self._provider_lock:
            if self.rate_limited:
                return RefreshStatus.SKIPPED
            try:
                closes = await self.provider.get_daily_closes(ticker, output_size)
            except AlphaVantageRateLimitError as exc:
                self.rate_limited = True
                logger.warning("Provider rate limit hit while refreshing %s: %s", ticker, exc)
                return RefreshStatus.RATE_LIMITED
            except AlphaVantageError as exc:
                logger.warning("Price refresh for %s failed, serving cached rows: %s", ticker, exc)
                return RefreshStatus.FAILED

        fresh = [c for c in closes if latest is None or c.date > latest]
        stored = await self.store(ticker, fresh)
        logger.info("Stored %d %s price rows for %s", stored, output_size, ticker)
        return RefreshStatus.FILLED if stored else RefreshStatus.FRESH

    async def get_range(
        self,
        ticker: str,
        start: date | None,
        end: date | None,
        *,
        refresh: bool = True,
    ) -> list[HistoricalPricePoint]:
        if refresh:
            await self.refresh(ticker)
        return await self.repository.fetch_range(ticker, start, end)

    async def load_series(self, ticker: str, end: date | None = None) -> PriceSeries:
        return PriceSeries(ticker, await self.get_range(ticker, None, end))

    async def resolve_price(self, ticker: str, day: date) -> ResolvedPrice | None:
        series = await self.load_series(ticker)
        return series.resolve(day)

    async def get_price(self, ticker: str, day: date) -> float | None:
        """Valuation price for ``day``: latest close on or before it, else the earliest close."""

        resolved = await self.resolve_price(ticker, day)
        return resolved.price if resolved else None

    async def get_live_price(self, ticker: str) -> float | None:
        if self.provider is None:
            return None
        async with self._provider_lock:
            if self.rate_limited:
                return None
            try:
                quote = await self.provider.get_latest_quote(ticker)
            except AlphaVantageRateLimitError as exc:
                self.rate_limited = True
                logger.warning("Provider rate limit hit while quoting %s: %s", ticker, exc)
                return None
            except AlphaVantageError as exc:
                logger.warning("Live quote for %s unavailable: %s", ticker, exc)
                return None
        return quote.price if quote else None


@dataclass
class BackfillReport:
    refreshed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    rate_limited: bool = False


async def backfill_prices(store: HistoricalPriceStore, tickers: Iterable[str]) -> BackfillReport:
    """Refresh many tickers concurrently, stopping provider calls after a rate limit."""

    report = BackfillReport()
    unique = list(dict.fromkeys(tickers))

    async def _one(ticker: str) -> None:
        status = await store.refresh(ticker)
        if status is RefreshStatus.FILLED:
            report.refreshed.append(ticker)
        elif status is RefreshStatus.FRESH:
            report.unchanged.append(ticker)
        elif status is RefreshStatus.FAILED:
            report.failed.append(ticker)
        else:
            report.skipped.append(ticker)

    await asyncio.gather(*(_one(t) for t in unique))
    report.rate_limited = store.rate_limited
    if report.rate_limited:
        logger.warning(
            "Price backfill halted by provider rate limit; %d ticker(s) left for the next run",
            len(report.skipped),
        )
    return report


__all__ = [
    "BackfillReport",
    "HistoricalPricePoint",
    "HistoricalPriceStore",
    "InMemoryPriceRepository",
    "MarketDataProvider",
    "PriceRepository",
    "PriceSeries",
    "PriceSource",
    "RefreshStatus",
    "ResolvedPrice",
    "backfill_prices",
]
