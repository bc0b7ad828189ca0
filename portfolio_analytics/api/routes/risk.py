"""Factor drift and regime scenario endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from portfolio_analytics.api.dependencies import (
    get_exposure_repository,
    get_portfolio_repository,
    get_regime_repository,
)
from portfolio_analytics.schemas import FactorDriftSchema, RiskReportResponse, ScenarioShockSchema
from portfolio_analytics.services.factors import ExposureRepository
from portfolio_analytics.services.jobs import market_today
from portfolio_analytics.services.regimes import RegimeRepository, build_risk_report
from portfolio_analytics.services.replay import PortfolioRepository, ReplayIntegrityError, open_positions

router = APIRouter()


@router.get("/regimes", response_model=RiskReportResponse)
async def regime_report(
    portfolio_id: int = Query(..., ge=1),
    portfolios: PortfolioRepository = Depends(get_portfolio_repository),
    exposures: ExposureRepository = Depends(get_exposure_repository),
    regimes: RegimeRepository = Depends(get_regime_repository),
) -> RiskReportResponse:
    loaded = await portfolios.load(portfolio_id)
    if loaded is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Portfolio not found")
    _, transactions = loaded

    as_of = market_today()
    try:
        tickers = sorted(open_positions(transactions, as_of))
    except ReplayIntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    latest = await exposures.latest_exposures(tickers, as_of)
    regime = await regimes.latest_probabilities(as_of)
    report = build_risk_report(latest, regime)
    return RiskReportResponse(
        portfolio_id=portfolio_id,
        as_of=report.as_of,
        tickers=tickers,
        exposure=report.exposure,
        drift=[
            FactorDriftSchema(
                factor=d.factor,
                current=d.current,
                target=d.target,
                drift=d.drift,
                notable=d.notable,
            )
            for d in report.drift
        ],
        scenarios=[
            ScenarioShockSchema(
                regime=s.regime,
                probability=s.probability,
                expected_shock=s.expected_shock,
                shock_vector=s.shock_vector,
            )
            for s in report.scenarios
        ],
        probability_weighted_shock=report.probability_weighted_shock,
    )


__all__ = ["router"]
