"""Schemas for factor drift and regime scenario reports."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


class FactorDriftSchema(BaseModel):
    factor: str
    current: float
    target: float
    drift: float
    notable: bool


class ScenarioShockSchema(BaseModel):
    regime: str
    probability: float
    expected_shock: float
    shock_vector: str = Field(..., description="Regime whose shock vector was applied")


class RiskReportResponse(BaseModel):
    portfolio_id: int
    as_of: date | None = None
    tickers: list[str]
    exposure: dict[str, float]
    drift: list[FactorDriftSchema]
    scenarios: list[ScenarioShockSchema]
    probability_weighted_shock: float


__all__ = ["FactorDriftSchema", "RiskReportResponse", "ScenarioShockSchema"]
