"""SQLAlchemy-backed repositories for the service-layer protocols.

Each repository opens its own session per call so concurrent reads issued via
``asyncio.gather`` never share a session. Cache reads and writes degrade to
empty results when the database errors; portfolio loads propagate.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portfolio_analytics.models import (
    FactorExposureRow,
    FactorReturnRow,
    HistoricalPrice,
    Portfolio,
    PortfolioSnapshotRow,
    PositionReturnRow,
    RegimeProbabilityRow,
    Transaction,
)
from portfolio_analytics.services.factors import FactorExposure, FactorReturn, PositionReturn
from portfolio_analytics.services.prices import HistoricalPricePoint
from portfolio_analytics.services.regimes import RegimeProbabilities
from portfolio_analytics.services.replay import PortfolioAccount, PortfolioSnapshot, TransactionRecord, TransactionType

logger = logging.getLogger(__name__)

_UPSERT_CHUNK = 500


async def _upsert(
    session: AsyncSession,
    model: Any,
    rows: Sequence[dict[str, Any]],
    index_elements: Sequence[str],
    update_columns: Sequence[str] = (),
) -> int:
    dialect = session.bind.dialect.name if session.bind is not None else "postgresql"
    insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
    for offset in range(0, len(rows), _UPSERT_CHUNK):
        stmt = insert(model).values(list(rows[offset : offset + _UPSERT_CHUNK]))
        if update_columns:
            stmt = stmt.on_conflict_do_update(
                index_elements=list(index_elements),
                set_={column: stmt.excluded[column] for column in update_columns},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(index_elements))
        await session.execute(stmt)
    return len(rows)


class SqlPriceRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def latest_date(self, ticker: str) -> date | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(func.max(HistoricalPrice.date)).where(HistoricalPrice.ticker == ticker)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError:
            logger.exception("Failed to read latest stored price date for %s", ticker)
            return None

    async def fetch_range(
        self, ticker: str, start: date | None, end: date | None
    ) -> list[HistoricalPricePoint]:
        stmt = select(HistoricalPrice.date, HistoricalPrice.close_price).where(HistoricalPrice.ticker == ticker)
        if start is not None:
            stmt = stmt.where(HistoricalPrice.date >= start)
        if end is not None:
            stmt = stmt.where(HistoricalPrice.date <= end)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt.order_by(HistoricalPrice.date))
                return [
                    HistoricalPricePoint(ticker=ticker, date=row.date, close_price=float(row.close_price))
                    for row in result
                ]
        except SQLAlchemyError:
            logger.exception("Failed to read cached prices for %s", ticker)
            return []

    async def insert_new(self, points: Sequence[HistoricalPricePoint]) -> int:
        rows = [{"ticker": p.ticker, "date": p.date, "close_price": p.close_price} for p in points]
        if not rows:
            return 0
        try:
            async with self._session_factory() as session:
                written = await _upsert(session, HistoricalPrice, rows, ("ticker", "date"))
                await session.commit()
                return written
        except SQLAlchemyError:
            logger.exception("Failed to persist %d price rows", len(rows))
            return 0


class SqlSnapshotRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_snapshots(self, portfolio_id: int, start: date, end: date) -> list[PortfolioSnapshot]:
        stmt = (
            select(PortfolioSnapshotRow)
            .where(
                PortfolioSnapshotRow.portfolio_id == portfolio_id,
                PortfolioSnapshotRow.date >= start,
                PortfolioSnapshotRow.date <= end,
            )
            .order_by(PortfolioSnapshotRow.date)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError:
            logger.exception("Failed to read cached snapshots for portfolio %s", portfolio_id)
            return []
        return [
            PortfolioSnapshot(
                portfolio_id=row.portfolio_id,
                date=row.date,
                total_value=row.total_value,
                positions_value=row.positions_value,
                cash=row.cash,
                interest_earned=row.interest_earned,
                degraded=row.degraded,
                notes=row.notes,
            )
            for row in rows
        ]

    async def save_snapshots(self, snapshots: Sequence[PortfolioSnapshot]) -> int:
        rows = [
            {
                "portfolio_id": s.portfolio_id,
                "date": s.date,
                "total_value": s.total_value,
                "positions_value": s.positions_value,
                "cash": s.cash,
                "interest_earned": s.interest_earned,
                "degraded": s.degraded,
                "notes": s.notes,
            }
            for s in snapshots
        ]
        if not rows:
            return 0
        try:
            async with self._session_factory() as session:
                written = await _upsert(
                    session,
                    PortfolioSnapshotRow,
                    rows,
                    ("portfolio_id", "date"),
                    ("total_value", "positions_value", "cash", "interest_earned", "degraded", "notes"),
                )
                await session.commit()
                return written
        except SQLAlchemyError:
            logger.exception("Failed to cache %d snapshots", len(rows))
            return 0


class SqlPortfolioRepository:
    """Portfolio accounts and their date-ordered transaction logs."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_portfolio_ids(self) -> list[int]:
        async with self._session_factory() as session:
            result = await session.execute(select(Portfolio.id).order_by(Portfolio.id))
            return list(result.scalars())

    async def load(self, portfolio_id: int) -> tuple[PortfolioAccount, list[TransactionRecord]] | None:
        async with self._session_factory() as session:
            portfolio = await session.get(Portfolio, portfolio_id)
            if portfolio is None:
                return None
            result = await session.execute(
                select(Transaction)
                .where(Transaction.portfolio_id == portfolio_id)
                .order_by(Transaction.transaction_date, Transaction.id)
            )
            transactions = result.scalars().all()

        account = PortfolioAccount(
            portfolio_id=portfolio.id,
            starting_cash=portfolio.starting_cash,
            created_on=portfolio.created_on,
            live_cash=portfolio.current_cash,
        )
        records = [
            TransactionRecord(
                id=tx.id,
                ticker=tx.ticker,
                type=TransactionType(tx.type),
                shares=tx.shares,
                price_per_share=tx.price_per_share,
                date=tx.transaction_date,
                total_amount=tx.total_amount,
            )
            for tx in transactions
        ]
        return account, records


class SqlReturnFeed:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def factor_returns(self, since: date, until: date) -> list[FactorReturn]:
        stmt = (
            select(FactorReturnRow)
            .where(FactorReturnRow.date >= since, FactorReturnRow.date <= until)
            .order_by(FactorReturnRow.date)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError:
            logger.exception("Failed to read factor returns")
            return []
        return [FactorReturn(date=row.date, factors=dict(row.factors or {})) for row in rows]

    async def position_returns(self, since: date, until: date) -> list[PositionReturn]:
        stmt = (
            select(PositionReturnRow)
            .where(PositionReturnRow.date >= since, PositionReturnRow.date <= until)
            .order_by(PositionReturnRow.ticker, PositionReturnRow.date)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError:
            logger.exception("Failed to read position returns")
            return []
        return [PositionReturn(ticker=row.ticker, date=row.date, daily_return=row.daily_return) for row in rows]


class SqlExposureRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert_exposures(self, exposures: Sequence[FactorExposure]) -> int:
        rows = [{"date": e.date, "ticker": e.ticker, "betas": dict(e.betas)} for e in exposures]
        if not rows:
            return 0
        try:
            async with self._session_factory() as session:
                written = await _upsert(session, FactorExposureRow, rows, ("date", "ticker"), ("betas",))
                await session.commit()
                return written
        except SQLAlchemyError:
            logger.exception("Failed to upsert %d factor exposure rows", len(rows))
            return 0

    async def latest_exposures(self, tickers: Sequence[str], as_of: date) -> list[FactorExposure]:
        if not tickers:
            return []
        latest = (
            select(FactorExposureRow.ticker, func.max(FactorExposureRow.date).label("max_date"))
            .where(FactorExposureRow.ticker.in_(list(tickers)), FactorExposureRow.date <= as_of)
            .group_by(FactorExposureRow.ticker)
            .subquery()
        )
        stmt = (
            select(FactorExposureRow)
            .join(
                latest,
                (FactorExposureRow.ticker == latest.c.ticker) & (FactorExposureRow.date == latest.c.max_date),
            )
            .order_by(FactorExposureRow.ticker)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError:
            logger.exception("Failed to read factor exposures")
            return []
        return [FactorExposure(date=row.date, ticker=row.ticker, betas=dict(row.betas or {})) for row in rows]


class SqlRegimeRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def latest_probabilities(self, as_of: date) -> RegimeProbabilities | None:
        stmt = (
            select(RegimeProbabilityRow)
            .where(RegimeProbabilityRow.as_of <= as_of)
            .order_by(RegimeProbabilityRow.as_of.desc())
            .limit(1)
        )
        try:
            async with self._session_factory() as session:
                row = (await session.execute(stmt)).scalars().first()
        except SQLAlchemyError:
            logger.exception("Failed to read regime probabilities")
            return None
        if row is None:
            return None
        return RegimeProbabilities(as_of=row.as_of, probabilities=dict(row.probabilities or {}))


__all__ = [
    "SqlExposureRepository",
    "SqlPortfolioRepository",
    "SqlPriceRepository",
    "SqlRegimeRepository",
    "SqlReturnFeed",
    "SqlSnapshotRepository",
]
