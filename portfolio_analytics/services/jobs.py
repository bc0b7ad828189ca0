"""Scheduled jobs: price backfill, snapshot precompute and daily factor exposures.

Jobs run against the SQL repositories by default. Each accepts an explicit
session factory and market-data provider so scripts and tests can point them
at another database or a stub provider.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portfolio_analytics.config import get_settings
from portfolio_analytics.db.repositories import (
    SqlExposureRepository,
    SqlPortfolioRepository,
    SqlPriceRepository,
    SqlReturnFeed,
    SqlSnapshotRepository,
)
from portfolio_analytics.db.session import get_session_factory
from portfolio_analytics.providers.alpha_vantage import AlphaVantageMarketData
from portfolio_analytics.services.factors import FactorExposure, compute_factor_exposures
from portfolio_analytics.services.prices import (
    BackfillReport,
    HistoricalPriceStore,
    MarketDataProvider,
    backfill_prices,
)
from portfolio_analytics.services.replay import (
    PortfolioAccount,
    PortfolioRepository,
    TransactionRecord,
    open_positions,
)
from portfolio_analytics.services.snapshots import Period, history_window, load_portfolio_history

logger = logging.getLogger(__name__)

# 1Y covers the daily-sampled presets; 5Y is sampled weekly.
PRECOMPUTED_PERIODS: tuple[Period, ...] = (Period.ONE_YEAR, Period.FIVE_YEARS)


def market_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


@dataclass
class SnapshotJobResult:
    as_of: date
    snapshots: dict[int, int] = field(default_factory=dict)
    failed: list[int] = field(default_factory=list)


async def _load_portfolios(
    repository: PortfolioRepository,
) -> list[tuple[PortfolioAccount, list[TransactionRecord]]]:
    loaded: list[tuple[PortfolioAccount, list[TransactionRecord]]] = []
    for portfolio_id in await repository.list_portfolio_ids():
        result = await repository.load(portfolio_id)
        if result is not None:
            loaded.append(result)
    return loaded


def held_tickers(
    portfolios: Iterable[tuple[PortfolioAccount, Sequence[TransactionRecord]]],
    as_of: date,
) -> list[str]:
    """Tickers with an open position in any portfolio as of ``as_of``."""

    tickers: set[str] = set()
    for account, transactions in portfolios:
        try:
            tickers.update(open_positions(transactions, as_of))
        except ValueError as exc:
            logger.warning("Skipping portfolio %s holdings: %s", account.portfolio_id, exc)
    return sorted(tickers)


async def run_price_backfill_job(
    as_of: date | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    provider: MarketDataProvider | None = None,
    tickers: Sequence[str] | None = None,
) -> BackfillReport:
    """Top up cached prices for every ticker ever traded (or ``tickers``)."""

    session_factory = session_factory or get_session_factory()
    as_of = as_of or market_today()
    if tickers is None:
        try:
            portfolios = await _load_portfolios(SqlPortfolioRepository(session_factory))
        except SQLAlchemyError:
            logger.exception("Price backfill could not load portfolios")
            return BackfillReport()
        tickers = sorted({tx.ticker for _, transactions in portfolios for tx in transactions if tx.date <= as_of})
    store = HistoricalPriceStore(
        SqlPriceRepository(session_factory),
        provider or AlphaVantageMarketData(),
    )
    logger.info("Backfilling prices for %d tickers", len(tickers))
    report = await backfill_prices(store, tickers)
    logger.info(
        "Price backfill done: %d refreshed, %d unchanged, %d failed, %d skipped",
        len(report.refreshed),
        len(report.unchanged),
        len(report.failed),
        len(report.skipped),
    )
    return report


async def run_snapshot_job(
    as_of: date | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    provider: MarketDataProvider | None = None,
    periods: Sequence[Period] = PRECOMPUTED_PERIODS,
) -> SnapshotJobResult:
    """Replay every portfolio over the chart presets and cache the historical rows."""

    session_factory = session_factory or get_session_factory()
    as_of = as_of or market_today()
    result = SnapshotJobResult(as_of=as_of)
    try:
        portfolios = await _load_portfolios(SqlPortfolioRepository(session_factory))
    except SQLAlchemyError:
        logger.exception("Snapshot job could not load portfolios")
        return result

    store = HistoricalPriceStore(
        SqlPriceRepository(session_factory),
        provider or AlphaVantageMarketData(),
        today=lambda: as_of,
    )
    cache = SqlSnapshotRepository(session_factory)
    for account, transactions in portfolios:
        if not transactions:
            continue
        try:
            for period in periods:
                start, end = history_window(period, as_of, transactions[0].date)
                if start > end:
                    continue
                history = await load_portfolio_history(
                    account,
                    transactions,
                    start,
                    end,
                    price_store=store,
                    cache=cache,
                    today=as_of,
                )
                result.snapshots[account.portfolio_id] = (
                    result.snapshots.get(account.portfolio_id, 0) + len(history.snapshots)
                )
        except ValueError as exc:
            logger.error("Portfolio %s cannot be replayed: %s", account.portfolio_id, exc)
            result.failed.append(account.portfolio_id)
    logger.info("Snapshot job for %s covered %d portfolios", as_of, len(result.snapshots))
    return result


async def run_daily_factor_job(
    as_of: date | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> list[FactorExposure]:
    """Estimate and persist factor exposures for all currently held tickers."""

    session_factory = session_factory or get_session_factory()
    as_of = as_of or market_today()
    try:
        portfolios = await _load_portfolios(SqlPortfolioRepository(session_factory))
    except SQLAlchemyError:
        logger.exception("Factor job could not load portfolios")
        return []
    tickers = held_tickers(portfolios, as_of)
    if not tickers:
        logger.info("No open positions on %s; nothing to estimate", as_of)
        return []
    feed = SqlReturnFeed(session_factory)
    return await compute_factor_exposures(
        as_of,
        factor_feed=feed,
        position_feed=feed,
        repository=SqlExposureRepository(session_factory),
        tickers=tickers,
    )


__all__ = [
    "PRECOMPUTED_PERIODS",
    "SnapshotJobResult",
    "held_tickers",
    "market_today",
    "run_daily_factor_job",
    "run_price_backfill_job",
    "run_snapshot_job",
]
