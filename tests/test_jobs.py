"""Scheduled job tests against SQLite with a stub market-data provider."""

from __future__ import annotations

from datetime import date, timedelta

import numpy as np
import pytest

from portfolio_analytics.db.repositories import SqlExposureRepository, SqlPriceRepository, SqlSnapshotRepository
from portfolio_analytics.models import FactorReturnRow, HistoricalPrice, Portfolio, PositionReturnRow, Transaction
from portfolio_analytics.providers.alpha_vantage import AlphaVantageRateLimitError, DailyClose
from portfolio_analytics.services.jobs import run_daily_factor_job, run_price_backfill_job, run_snapshot_job
from portfolio_analytics.services.snapshots import Period

AS_OF = date(2024, 3, 1)


async def _seed_portfolio(factory, *, closed_ticker=False):
    async with factory() as session:
        session.add(Portfolio(id=1, name="Main", starting_cash=1_000_000.0, created_on=date(2024, 1, 1)))
        session.add(
            Transaction(
                id=1, portfolio_id=1, ticker="PATH", type="buy", shares=10, price_per_share=10.0,
                total_amount=100.0, transaction_date=date(2024, 1, 2),
            )
        )
        session.add(
            Transaction(
                id=2, portfolio_id=1, ticker="MSFT", type="buy", shares=1, price_per_share=300.0,
                total_amount=300.0, transaction_date=date(2024, 1, 3),
            )
        )
        if closed_ticker:
            session.add(
                Transaction(
                    id=3, portfolio_id=1, ticker="MSFT", type="sell", shares=1, price_per_share=310.0,
                    total_amount=310.0, transaction_date=date(2024, 1, 4),
                )
            )
        await session.commit()


@pytest.mark.asyncio
async def test_factor_job_estimates_open_positions_only(sqlite_database):
    rng = np.random.default_rng(3)
    mkt = rng.normal(0, 0.01, size=40)
    async with sqlite_database() as factory:
        await _seed_portfolio(factory, closed_ticker=True)
        async with factory() as session:
            for i in range(40):
                day = AS_OF - timedelta(days=39 - i)
                session.add(FactorReturnRow(date=day, factors={"mkt": float(mkt[i]), "smb": 0.0}))
                session.add(PositionReturnRow(ticker="PATH", date=day, daily_return=float(2 * mkt[i])))
                session.add(PositionReturnRow(ticker="MSFT", date=day, daily_return=float(mkt[i])))
            await session.commit()

        exposures = await run_daily_factor_job(AS_OF, session_factory=factory)
        stored = await SqlExposureRepository(factory).latest_exposures(["PATH", "MSFT"], AS_OF)

    assert [e.ticker for e in exposures] == ["PATH"]
    assert exposures[0].betas["mkt"] == pytest.approx(2.0)
    assert exposures[0].betas["smb"] == 0.0
    assert [e.ticker for e in stored] == ["PATH"]


@pytest.mark.asyncio
async def test_factor_job_without_portfolios_is_a_no_op(sqlite_database):
    async with sqlite_database() as factory:
        assert await run_daily_factor_job(AS_OF, session_factory=factory) == []


@pytest.mark.asyncio
async def test_price_backfill_job_stops_on_rate_limit(sqlite_database, stub_market_data):
    provider = stub_market_data(
        closes={"PATH": [DailyClose(date(2024, 2, 28), 11.0), DailyClose(date(2024, 2, 29), 12.0)]},
        errors={"MSFT": AlphaVantageRateLimitError("Note")},
    )
    async with sqlite_database() as factory:
        await _seed_portfolio(factory)
        report = await run_price_backfill_job(AS_OF, session_factory=factory, provider=provider)
        stored = await SqlPriceRepository(factory).fetch_range("PATH", None, None)

    assert report.rate_limited
    assert report.failed == []
    assert "MSFT" in report.skipped
    assert [p.close_price for p in stored] in ([], [11.0, 12.0])


@pytest.mark.asyncio
async def test_snapshot_job_caches_historical_rows(sqlite_database, stub_market_data):
    async with sqlite_database() as factory:
        await _seed_portfolio(factory)
        async with factory() as session:
            for ticker, close in (("PATH", 11.0), ("MSFT", 310.0)):
                session.add(HistoricalPrice(ticker=ticker, date=AS_OF - timedelta(days=1), close_price=close))
            await session.commit()

        result = await run_snapshot_job(
            AS_OF, session_factory=factory, provider=stub_market_data(), periods=[Period.ONE_MONTH]
        )
        cached = await SqlSnapshotRepository(factory).get_snapshots(1, date(2024, 1, 1), AS_OF)

    assert result.failed == []
    assert result.snapshots[1] == (AS_OF - date(2024, 2, 1)).days + 1
    assert [s.date for s in cached][-1] == AS_OF - timedelta(days=1)
    assert all(s.date < AS_OF for s in cached)
    assert cached[-1].positions_value == pytest.approx(10 * 11.0 + 310.0)
