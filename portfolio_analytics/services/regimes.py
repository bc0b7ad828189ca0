"""Regime scenario shocks and factor drift diagnostics.

Everything here is recomputed from the latest exposures and regime
probabilities on each call; nothing is persisted.

Two simplifications are deliberate and visible to callers:

* the portfolio exposure is the plain sum of per-ticker betas, unless the
  caller passes position weights;
* regime probabilities are reported as given and are not normalised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping, Protocol

from portfolio_analytics.config import get_settings
from portfolio_analytics.services.factors import FactorExposure

DEFAULT_TARGETS: dict[str, float] = {"mkt": 1.0, "smb": 0.15, "hml": 0.0}

SCENARIO_SHOCKS: dict[str, dict[str, float]] = {
    "calm": {"mkt": -0.01, "smb": -0.002, "hml": 0.001},
    "stress": {"mkt": -0.05, "smb": -0.01, "hml": -0.02},
    "growth": {"mkt": 0.02, "smb": 0.005, "hml": -0.005},
}


@dataclass(frozen=True)
class RegimeProbabilities:
    as_of: date
    probabilities: Mapping[str, float]


class RegimeRepository(Protocol):
    async def latest_probabilities(self, as_of: date) -> RegimeProbabilities | None:
        ...


class InMemoryRegimeRepository:
    def __init__(self, rows: Iterable[RegimeProbabilities] = ()) -> None:
        self._rows = sorted(rows, key=lambda r: r.as_of)

    async def latest_probabilities(self, as_of: date) -> RegimeProbabilities | None:
        eligible = [r for r in self._rows if r.as_of <= as_of]
        return eligible[-1] if eligible else None


@dataclass(frozen=True)
class FactorDrift:
    factor: str
    current: float
    target: float
    drift: float
    notable: bool


@dataclass(frozen=True)
class ScenarioShock:
    regime: str
    probability: float
    expected_shock: float
    shock_vector: str


@dataclass
class RiskReport:
    as_of: date | None
    exposure: dict[str, float] = field(default_factory=dict)
    drift: list[FactorDrift] = field(default_factory=list)
    scenarios: list[ScenarioShock] = field(default_factory=list)
    probability_weighted_shock: float = 0.0


def aggregate_exposure(
    exposures: Iterable[FactorExposure],
    weights: Mapping[str, float] | None = None,
) -> dict[str, float]:
    """Sum of betas per factor across tickers, optionally scaled by ``weights``."""

    totals: dict[str, float] = {}
    for exposure in exposures:
        scale = 1.0 if weights is None else float(weights.get(exposure.ticker, 0.0))
        for factor, beta in exposure.betas.items():
            totals[factor] = totals.get(factor, 0.0) + float(beta or 0.0) * scale
    return totals


def exposure_drift(
    exposure: Mapping[str, float],
    targets: Mapping[str, float] | None = None,
    threshold: float | None = None,
) -> list[FactorDrift]:
    """Current minus target for every factor in either mapping."""

    targets = DEFAULT_TARGETS if targets is None else targets
    threshold = get_settings().drift_threshold if threshold is None else threshold
    rows: list[FactorDrift] = []
    for factor in dict.fromkeys([*exposure, *targets]):
        current = float(exposure.get(factor, 0.0))
        target = float(targets.get(factor, 0.0))
        drift = current - target
        rows.append(FactorDrift(factor, current, target, drift, drift > threshold))
    return rows


def scenario_shocks(
    probabilities: Mapping[str, float],
    exposure: Mapping[str, float],
    shocks: Mapping[str, Mapping[str, float]] | None = None,
    default_regime: str | None = None,
) -> list[ScenarioShock]:
    """Expected return shock per regime, ``sum(shock[f] * beta[f])``.

    A regime without its own shock vector uses ``default_regime``'s vector.
    """

    shocks = SCENARIO_SHOCKS if shocks is None else shocks
    default_regime = default_regime or get_settings().default_regime
    if default_regime not in shocks:
        raise ValueError(f"default regime {default_regime!r} has no shock vector")
    rows: list[ScenarioShock] = []
    for label, probability in probabilities.items():
        vector_label = label if label in shocks else default_regime
        vector = shocks[vector_label]
        expected = sum(float(vector.get(factor, 0.0)) * beta for factor, beta in exposure.items())
        rows.append(ScenarioShock(label, float(probability), expected, vector_label))
    return rows


def build_risk_report(
    exposures: Iterable[FactorExposure],
    regime: RegimeProbabilities | None,
    *,
    weights: Mapping[str, float] | None = None,
    targets: Mapping[str, float] | None = None,
    shocks: Mapping[str, Mapping[str, float]] | None = None,
    threshold: float | None = None,
) -> RiskReport:
    exposure = aggregate_exposure(exposures, weights)
    report = RiskReport(
        as_of=regime.as_of if regime else None,
        exposure=exposure,
        drift=exposure_drift(exposure, targets, threshold),
    )
    if regime is not None:
        report.scenarios = scenario_shocks(regime.probabilities, exposure, shocks)
        report.probability_weighted_shock = sum(s.probability * s.expected_shock for s in report.scenarios)
    return report


__all__ = [
    "DEFAULT_TARGETS",
    "SCENARIO_SHOCKS",
    "FactorDrift",
    "InMemoryRegimeRepository",
    "RegimeProbabilities",
    "RegimeRepository",
    "RiskReport",
    "ScenarioShock",
    "aggregate_exposure",
    "build_risk_report",
    "exposure_drift",
    "scenario_shocks",
]
