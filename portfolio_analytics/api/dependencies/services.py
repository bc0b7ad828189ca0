"""Repository and price-store providers for API routes.

Tests replace these through ``app.dependency_overrides``.
"""

from __future__ import annotations

from portfolio_analytics.db.repositories import (
    SqlExposureRepository,
    SqlPortfolioRepository,
    SqlPriceRepository,
    SqlRegimeRepository,
    SqlSnapshotRepository,
)
from portfolio_analytics.db.session import get_session_factory
from portfolio_analytics.providers.alpha_vantage import AlphaVantageMarketData
from portfolio_analytics.services.factors import ExposureRepository
from portfolio_analytics.services.prices import HistoricalPriceStore
from portfolio_analytics.services.regimes import RegimeRepository
from portfolio_analytics.services.replay import PortfolioRepository
from portfolio_analytics.services.snapshots import SnapshotRepository


def get_price_store() -> HistoricalPriceStore:
    """A fresh store per request, so refreshes are memoised for that request only."""

    return HistoricalPriceStore(SqlPriceRepository(get_session_factory()), AlphaVantageMarketData())


def get_snapshot_repository() -> SnapshotRepository:
    return SqlSnapshotRepository(get_session_factory())


def get_portfolio_repository() -> PortfolioRepository:
    return SqlPortfolioRepository(get_session_factory())


def get_exposure_repository() -> ExposureRepository:
    return SqlExposureRepository(get_session_factory())


def get_regime_repository() -> RegimeRepository:
    return SqlRegimeRepository(get_session_factory())


__all__ = [
    "get_exposure_repository",
    "get_portfolio_repository",
    "get_price_store",
    "get_regime_repository",
    "get_snapshot_repository",
]
