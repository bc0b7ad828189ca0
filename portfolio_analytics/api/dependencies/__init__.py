"""FastAPI dependency providers."""

from .services import (
    get_exposure_repository,
    get_portfolio_repository,
    get_price_store,
    get_regime_repository,
    get_snapshot_repository,
)

__all__ = [
    "get_exposure_repository",
    "get_portfolio_repository",
    "get_price_store",
    "get_regime_repository",
    "get_snapshot_repository",
]
