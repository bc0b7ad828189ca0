"""Pydantic schema exports."""

from .history import (
    HistorySummarySchema,
    PortfolioHistoryResponse,
    PortfolioSnapshotSchema,
    PositionValuationSchema,
)
from .jobs import JobRequest, JobResponse
from .risk import FactorDriftSchema, RiskReportResponse, ScenarioShockSchema

__all__ = [
    "FactorDriftSchema",
    "HistorySummarySchema",
    "JobRequest",
    "JobResponse",
    "PortfolioHistoryResponse",
    "PortfolioSnapshotSchema",
    "PositionValuationSchema",
    "RiskReportResponse",
    "ScenarioShockSchema",
]
