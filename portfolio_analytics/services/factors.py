"""Rolling single-factor betas for held tickers.

For every ticker with enough return history inside the lookback window, each
factor's beta is the OLS slope of the ticker's daily returns on that factor's
daily returns alone, ``cov(stock, factor) / var(factor)``. Factors are
regressed one at a time, never jointly.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Mapping, Protocol, Sequence

import numpy as np
import pandas as pd

from portfolio_analytics.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FactorReturn:
    date: date
    factors: Mapping[str, float]


@dataclass(frozen=True)
class PositionReturn:
    ticker: str
    date: date
    daily_return: float | None


@dataclass(frozen=True)
class FactorExposure:
    date: date
    ticker: str
    betas: dict[str, float] = field(default_factory=dict)


class FactorReturnFeed(Protocol):
    async def factor_returns(self, since: date, until: date) -> list[FactorReturn]:
        ...


class PositionReturnFeed(Protocol):
    async def position_returns(self, since: date, until: date) -> list[PositionReturn]:
        ...


class ExposureRepository(Protocol):
    async def upsert_exposures(self, exposures: Sequence[FactorExposure]) -> int:
        ...

    async def latest_exposures(self, tickers: Sequence[str], as_of: date) -> list[FactorExposure]:
        ...


class InMemoryReturnFeed:
    """Factor and position return feeds served from lists."""

    def __init__(
        self,
        factor_returns: Iterable[FactorReturn] = (),
        position_returns: Iterable[PositionReturn] = (),
    ) -> None:
        self._factor_returns = sorted(factor_returns, key=lambda r: r.date)
        self._position_returns = sorted(position_returns, key=lambda r: (r.ticker, r.date))

    async def factor_returns(self, since: date, until: date) -> list[FactorReturn]:
        return [r for r in self._factor_returns if since <= r.date <= until]

    async def position_returns(self, since: date, until: date) -> list[PositionReturn]:
        return [r for r in self._position_returns if since <= r.date <= until]


class InMemoryExposureRepository:
    def __init__(self) -> None:
        self._rows: dict[tuple[date, str], FactorExposure] = {}

    async def upsert_exposures(self, exposures: Sequence[FactorExposure]) -> int:
        for exposure in exposures:
            self._rows[(exposure.date, exposure.ticker)] = exposure
        return len(exposures)

    async def latest_exposures(self, tickers: Sequence[str], as_of: date) -> list[FactorExposure]:
        wanted = set(tickers)
        latest: dict[str, FactorExposure] = {}
        for (day, ticker), exposure in self._rows.items():
            if ticker not in wanted or day > as_of:
                continue
            if ticker not in latest or latest[ticker].date < day:
                latest[ticker] = exposure
        return [latest[t] for t in sorted(latest)]


def single_factor_beta(stock: np.ndarray, factor: np.ndarray) -> float:
    """OLS slope of ``stock`` on ``factor``; zero when the factor never moves."""

    if len(stock) != len(factor) or len(stock) == 0:
        return 0.0
    if np.all(factor == factor[0]):
        return 0.0
    factor_dev = factor - factor.mean()
    stock_dev = stock - stock.mean()
    variance = float(np.dot(factor_dev, factor_dev))
    if variance == 0.0:
        return 0.0
    return float(np.dot(stock_dev, factor_dev) / variance)


def factor_frame(factor_returns: Iterable[FactorReturn]) -> pd.DataFrame:
    """One row per date, one column per factor name."""

    rows = {r.date: dict(r.factors) for r in factor_returns}
    if not rows:
        return pd.DataFrame()
    frame = pd.DataFrame.from_dict(rows, orient="index")
    return frame.sort_index()


def estimate_exposures(
    factor_returns: Iterable[FactorReturn],
    position_returns: Iterable[PositionReturn],
    *,
    min_observations: int | None = None,
    tickers: Iterable[str] | None = None,
) -> list[FactorExposure]:
    """Betas per ticker keyed by its last date aligned with the factor series.

    Tickers with fewer than ``min_observations`` aligned dates are skipped.
    A factor missing on an aligned date counts as a zero return that day.
    """

    if min_observations is None:
        min_observations = get_settings().factor_min_observations
    factors = factor_frame(factor_returns)
    if factors.empty:
        return []

    records = [
        {"ticker": r.ticker, "date": r.date, "daily_return": r.daily_return}
        for r in position_returns
    ]
    if not records:
        return []
    positions = pd.DataFrame.from_records(records)
    if tickers is not None:
        positions = positions[positions["ticker"].isin(set(tickers))]

    exposures: list[FactorExposure] = []
    for ticker, group in positions.groupby("ticker", sort=True):
        stock = (
            group.drop_duplicates("date", keep="last")
            .set_index("date")["daily_return"]
            .astype(float)
            .sort_index()
        )
        common = stock.index.intersection(factors.index).sort_values()
        if len(common) < min_observations:
            logger.debug(
                "Skipping %s: %d aligned observations, need %d", ticker, len(common), min_observations
            )
            continue
        aligned = factors.loc[common]
        present = [name for name in aligned.columns if aligned[name].notna().any()]
        stock_values = stock.loc[common].fillna(0.0).to_numpy(dtype=float)
        betas = {
            str(name): single_factor_beta(stock_values, aligned[name].fillna(0.0).to_numpy(dtype=float))
            for name in present
        }
        exposures.append(FactorExposure(date=common[-1], ticker=str(ticker), betas=betas))
    return exposures


async def compute_factor_exposures(
    as_of: date,
    *,
    factor_feed: FactorReturnFeed,
    position_feed: PositionReturnFeed,
    repository: ExposureRepository,
    tickers: Iterable[str] | None = None,
    lookback_days: int | None = None,
    min_observations: int | None = None,
) -> list[FactorExposure]:
    """Estimate exposures over the lookback window ending ``as_of`` and upsert them."""

    settings = get_settings()
    lookback = settings.factor_lookback_days if lookback_days is None else lookback_days
    since = as_of - timedelta(days=lookback)
    factor_returns, position_returns = await asyncio.gather(
        factor_feed.factor_returns(since, as_of),
        position_feed.position_returns(since, as_of),
    )
    exposures = estimate_exposures(
        factor_returns,
        position_returns,
        min_observations=min_observations,
        tickers=tickers,
    )
    if not exposures:
        logger.info("No factor exposures computed for %s", as_of)
        return []
    written = await repository.upsert_exposures(exposures)
    logger.info("Upserted %d factor exposure rows for %s", written, as_of)
    return exposures


__all__ = [
    "ExposureRepository",
    "FactorExposure",
    "FactorReturn",
    "FactorReturnFeed",
    "InMemoryExposureRepository",
    "InMemoryReturnFeed",
    "PositionReturn",
    "PositionReturnFeed",
    "compute_factor_exposures",
    "estimate_exposures",
    "factor_frame",
    "single_factor_beta",
]
