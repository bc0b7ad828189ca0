"""Schemas for the portfolio value chart."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field

from portfolio_analytics.services.prices import PriceSource
from portfolio_analytics.services.snapshots import Period


class PositionValuationSchema(BaseModel):
    ticker: str
    shares: float
    price: float
    price_source: PriceSource
    market_value: float


class PortfolioSnapshotSchema(BaseModel):
    date: date
    total_value: float
    positions_value: float
    cash: float
    interest_earned: float
    degraded: bool = False
    notes: str | None = None
    positions: list[PositionValuationSchema] = Field(default_factory=list)


class HistorySummarySchema(BaseModel):
    current_value: float
    start_value: float
    change: float
    change_percent: float
    total_interest_earned: float


class PortfolioHistoryResponse(BaseModel):
    portfolio_id: int
    period: Period
    start: date
    end: date
    from_cache: bool = False
    summary: HistorySummarySchema
    snapshots: list[PortfolioSnapshotSchema]

    class Config:
        json_schema_extra = {
            "example": {
                "portfolio_id": 1,
                "period": "1M",
                "start": "2024-01-02",
                "end": "2024-02-02",
                "from_cache": False,
                "summary": {
                    "current_value": 50012345.0,
                    "start_value": 50000000.0,
                    "change": 12345.0,
                    "change_percent": 0.02469,
                    "total_interest_earned": 5753.42,
                },
                "snapshots": [],
            }
        }


__all__ = [
    "HistorySummarySchema",
    "PortfolioHistoryResponse",
    "PortfolioSnapshotSchema",
    "PositionValuationSchema",
]
