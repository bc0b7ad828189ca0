"""Factor exposure estimator tests."""

from __future__ import annotations

from datetime import date, timedelta

import numpy as np
import pytest

from portfolio_analytics.services.factors import (
    FactorReturn,
    InMemoryExposureRepository,
    InMemoryReturnFeed,
    PositionReturn,
    compute_factor_exposures,
    estimate_exposures,
    single_factor_beta,
)

START = date(2024, 1, 1)
RNG = np.random.default_rng(7)
MKT = RNG.normal(0, 0.01, size=30)


def _factor_returns(n=30, **overrides):
    rows = []
    for i in range(n):
        factors = {"mkt": float(MKT[i]), "smb": 0.002}
        for name, values in overrides.items():
            factors[name] = values[i]
        rows.append(FactorReturn(START + timedelta(days=i), factors))
    return rows


def _position_returns(ticker, values, offset=0):
    return [PositionReturn(ticker, START + timedelta(days=i + offset), float(v)) for i, v in enumerate(values)]


def test_zero_variance_factor_has_zero_beta():
    stock = RNG.normal(0, 0.02, size=30)
    exposures = estimate_exposures(_factor_returns(), _position_returns("PATH", stock))
    assert exposures[0].betas["smb"] == 0.0


def test_identical_series_have_unit_beta():
    exposures = estimate_exposures(_factor_returns(), _position_returns("PATH", MKT))
    assert exposures[0].betas["mkt"] == pytest.approx(1.0)


def test_beta_matches_cov_over_var():
    stock = 1.7 * MKT + RNG.normal(0, 0.001, size=30)
    expected = np.cov(stock, MKT)[0, 1] / np.var(MKT, ddof=1)
    assert single_factor_beta(stock, MKT) == pytest.approx(expected)


def test_insufficient_aligned_history_skips_ticker():
    factors = _factor_returns()
    # only 9 of these dates overlap the factor series
    positions = _position_returns("SHORT", MKT[:20], offset=21) + _position_returns("LONG", MKT)
    exposures = estimate_exposures(factors, positions, min_observations=10)
    assert [e.ticker for e in exposures] == ["LONG"]


def test_exposure_keyed_by_last_aligned_date():
    positions = _position_returns("PATH", MKT[:15])
    exposures = estimate_exposures(_factor_returns(), positions)
    assert exposures[0].date == START + timedelta(days=14)


def test_missing_factor_value_counts_as_zero():
    hml = [0.01 * ((-1) ** i) for i in range(30)]
    hml[3] = None
    factors = _factor_returns(hml=hml)
    stock = [0.01 * ((-1) ** i) for i in range(30)]
    stock[3] = 0.0
    exposures = estimate_exposures(factors, _position_returns("PATH", stock))
    assert exposures[0].betas["hml"] == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_compute_upserts_by_date_and_ticker():
    as_of = START + timedelta(days=29)
    feed = InMemoryReturnFeed(_factor_returns(), _position_returns("PATH", MKT) + _position_returns("MSFT", 2 * MKT))
    repository = InMemoryExposureRepository()

    first = await compute_factor_exposures(as_of, factor_feed=feed, position_feed=feed, repository=repository)
    second = await compute_factor_exposures(as_of, factor_feed=feed, position_feed=feed, repository=repository)

    assert first == second
    latest = await repository.latest_exposures(["PATH", "MSFT"], as_of)
    assert len(repository._rows) == 2
    assert {e.ticker: round(e.betas["mkt"], 6) for e in latest} == {"MSFT": 2.0, "PATH": 1.0}


@pytest.mark.asyncio
async def test_compute_respects_lookback_and_ticker_filter():
    as_of = START + timedelta(days=29)
    feed = InMemoryReturnFeed(_factor_returns(), _position_returns("PATH", MKT) + _position_returns("MSFT", MKT))
    repository = InMemoryExposureRepository()

    short = await compute_factor_exposures(
        as_of, factor_feed=feed, position_feed=feed, repository=repository, lookback_days=5
    )
    filtered = await compute_factor_exposures(
        as_of, factor_feed=feed, position_feed=feed, repository=repository, tickers=["PATH"]
    )

    assert short == []
    assert [e.ticker for e in filtered] == ["PATH"]
