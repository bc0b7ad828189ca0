"""Portfolio value history endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from portfolio_analytics.api.dependencies import (
    get_portfolio_repository,
    get_price_store,
    get_snapshot_repository,
)
from portfolio_analytics.schemas import (
    HistorySummarySchema,
    PortfolioHistoryResponse,
    PortfolioSnapshotSchema,
    PositionValuationSchema,
)
from portfolio_analytics.services.prices import HistoricalPriceStore
from portfolio_analytics.services.replay import PortfolioRepository, PortfolioSnapshot, ReplayIntegrityError
from portfolio_analytics.services.snapshots import (
    Period,
    SnapshotRepository,
    history_window,
    load_portfolio_history,
    summarize_history,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _snapshot_schema(snapshot: PortfolioSnapshot) -> PortfolioSnapshotSchema:
    return PortfolioSnapshotSchema(
        date=snapshot.date,
        total_value=snapshot.total_value,
        positions_value=snapshot.positions_value,
        cash=snapshot.cash,
        interest_earned=snapshot.interest_earned,
        degraded=snapshot.degraded,
        notes=snapshot.notes,
        positions=[
            PositionValuationSchema(
                ticker=v.ticker,
                shares=v.shares,
                price=v.price,
                price_source=v.price_source,
                market_value=v.market_value,
            )
            for v in snapshot.positions
        ],
    )


@router.get("/{portfolio_id}/history", response_model=PortfolioHistoryResponse)
async def portfolio_history(
    portfolio_id: int,
    period: Period = Query(Period.ONE_YEAR),
    portfolios: PortfolioRepository = Depends(get_portfolio_repository),
    price_store: HistoricalPriceStore = Depends(get_price_store),
    cache: SnapshotRepository = Depends(get_snapshot_repository),
) -> PortfolioHistoryResponse:
    """Daily (weekly for 5Y) portfolio values for the requested period."""

    loaded = await portfolios.load(portfolio_id)
    if loaded is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Portfolio not found")
    account, transactions = loaded

    today = price_store.today()
    first_trade = transactions[0].date if transactions else None
    start, end = history_window(period, today, first_trade)

    snapshots: list[PortfolioSnapshot] = []
    from_cache = False
    if start <= end:
        try:
            history = await load_portfolio_history(
                account,
                transactions,
                start,
                end,
                price_store=price_store,
                cache=cache,
                today=today,
            )
        except ReplayIntegrityError as exc:
            logger.error("Portfolio %s history cannot be replayed: %s", portfolio_id, exc)
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
        snapshots, from_cache = history.snapshots, history.from_cache

    summary = summarize_history(snapshots)
    return PortfolioHistoryResponse(
        portfolio_id=portfolio_id,
        period=period,
        start=start,
        end=end,
        from_cache=from_cache,
        summary=HistorySummarySchema(
            current_value=summary.current_value,
            start_value=summary.start_value,
            change=summary.change,
            change_percent=summary.change_percent,
            total_interest_earned=summary.total_interest_earned,
        ),
        snapshots=[_snapshot_schema(s) for s in snapshots],
    )


__all__ = ["router"]
