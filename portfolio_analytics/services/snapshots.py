"""Portfolio snapshot cache and chart history helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Protocol, Sequence

import pandas as pd

from portfolio_analytics.services.prices import HistoricalPriceStore
from portfolio_analytics.services.replay import (
    PortfolioAccount,
    PortfolioSnapshot,
    TransactionRecord,
    replay_portfolio,
    sample_dates,
    sampling_stride,
)

logger = logging.getLogger(__name__)


class SnapshotRepository(Protocol):
    """Persisted ``(portfolio_id, date)`` valuation rows."""

    async def get_snapshots(self, portfolio_id: int, start: date, end: date) -> list[PortfolioSnapshot]:
        ...

    async def save_snapshots(self, snapshots: Sequence[PortfolioSnapshot]) -> int:
        ...


class InMemorySnapshotRepository:
    def __init__(self) -> None:
        self._rows: dict[tuple[int, date], PortfolioSnapshot] = {}

    async def get_snapshots(self, portfolio_id: int, start: date, end: date) -> list[PortfolioSnapshot]:
        rows = [
            snap
            for (pid, day), snap in self._rows.items()
            if pid == portfolio_id and start <= day <= end
        ]
        return sorted(rows, key=lambda s: s.date)

    async def save_snapshots(self, snapshots: Sequence[PortfolioSnapshot]) -> int:
        for snap in snapshots:
            # Position detail is not part of the cached row.
            self._rows[(snap.portfolio_id, snap.date)] = PortfolioSnapshot(
                portfolio_id=snap.portfolio_id,
                date=snap.date,
                total_value=snap.total_value,
                positions_value=snap.positions_value,
                cash=snap.cash,
                interest_earned=snap.interest_earned,
                degraded=snap.degraded,
                notes=snap.notes,
            )
        return len(snapshots)


class Period(str, Enum):
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    SIX_MONTHS = "6M"
    YEAR_TO_DATE = "YTD"
    ONE_YEAR = "1Y"
    FIVE_YEARS = "5Y"


_PERIOD_OFFSETS = {
    Period.ONE_MONTH: pd.DateOffset(months=1),
    Period.THREE_MONTHS: pd.DateOffset(months=3),
    Period.SIX_MONTHS: pd.DateOffset(months=6),
    Period.ONE_YEAR: pd.DateOffset(years=1),
    Period.FIVE_YEARS: pd.DateOffset(years=5),
}


def history_window(
    period: Period | str,
    today: date,
    first_transaction_date: date | None = None,
) -> tuple[date, date]:
    """Chart range for ``period`` ending today, never starting before the first trade."""

    period = Period(period)
    if period is Period.YEAR_TO_DATE:
        start = date(today.year, 1, 1)
    else:
        start = (pd.Timestamp(today) - _PERIOD_OFFSETS[period]).date()
    if first_transaction_date is not None and first_transaction_date > start:
        start = first_transaction_date
    return start, today


@dataclass
class PortfolioHistory:
    snapshots: list[PortfolioSnapshot]
    from_cache: bool = False


@dataclass(frozen=True)
class HistorySummary:
    current_value: float
    start_value: float
    change: float
    change_percent: float
    total_interest_earned: float


def summarize_history(snapshots: Sequence[PortfolioSnapshot]) -> HistorySummary:
    if not snapshots:
        return HistorySummary(0.0, 0.0, 0.0, 0.0, 0.0)
    first, last = snapshots[0], snapshots[-1]
    change = last.total_value - first.total_value
    change_percent = change / first.total_value * 100 if first.total_value > 0 else 0.0
    return HistorySummary(
        current_value=last.total_value,
        start_value=first.total_value,
        change=change,
        change_percent=change_percent,
        total_interest_earned=last.interest_earned,
    )


async def load_portfolio_history(
    account: PortfolioAccount,
    transactions: Sequence[TransactionRecord],
    start: date,
    end: date,
    *,
    price_store: HistoricalPriceStore,
    cache: SnapshotRepository,
    today: date | None = None,
    annual_rate: float | None = None,
) -> PortfolioHistory:
    """Snapshots for ``[start, end]``, served from the cache when it covers the range.

    Past dates come from the cache if every sampled date is present; otherwise
    the range is replayed and the past rows are written back, except those
    priced at average cost or an earliest close. Today's snapshot is always
    computed live and never cached.
    """

    if not transactions:
        return PortfolioHistory(snapshots=[])
    today = today or price_store.today()
    stride = sampling_stride(start, end)
    historical = [d for d in sample_dates(start, end, stride) if d < today]

    cached: dict[date, PortfolioSnapshot] = {}
    if historical:
        rows = await cache.get_snapshots(account.portfolio_id, historical[0], historical[-1])
        cached = {row.date: row for row in rows}

    if historical and all(d in cached for d in historical):
        snapshots = [cached[d] for d in historical]
        if start <= today <= end:
            snapshots.extend(
                await replay_portfolio(
                    account,
                    transactions,
                    today,
                    today,
                    price_store=price_store,
                    annual_rate=annual_rate,
                    today=today,
                )
            )
        logger.debug("Served %d cached snapshots for portfolio %s", len(historical), account.portfolio_id)
        return PortfolioHistory(snapshots=snapshots, from_cache=True)

    snapshots = await replay_portfolio(
        account,
        transactions,
        start,
        end,
        price_store=price_store,
        annual_rate=annual_rate,
        today=today,
        stride=stride,
    )
    # Only rows valued at stored closes are cached.
    to_cache = [snap for snap in snapshots if snap.date < today and not snap.degraded]
    if to_cache:
        await cache.save_snapshots(to_cache)
    return PortfolioHistory(snapshots=snapshots)


__all__ = [
    "HistorySummary",
    "InMemorySnapshotRepository",
    "Period",
    "PortfolioHistory",
    "SnapshotRepository",
    "history_window",
    "load_portfolio_history",
    "summarize_history",
]
