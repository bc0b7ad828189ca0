from datetime import date

import pytest

from portfolio_analytics.services.factors import FactorExposure
from portfolio_analytics.services.regimes import (
    InMemoryRegimeRepository,
    RegimeProbabilities,
    aggregate_exposure,
    build_risk_report,
    exposure_drift,
    scenario_shocks,
)

AS_OF = date(2024, 3, 1)


def test_stress_scenario_with_unit_market_beta():
    rows = scenario_shocks({"stress": 0.6}, {"mkt": 1.0}, shocks={"stress": {"mkt": -0.05}}, default_regime="stress")
    assert rows[0].probability == 0.6
    assert rows[0].expected_shock == pytest.approx(-0.05)


def test_unknown_regime_uses_default_shock_vector():
    rows = scenario_shocks({"meltdown": 0.2}, {"mkt": 1.0, "smb": 0.5})
    assert rows[0].regime == "meltdown"
    assert rows[0].shock_vector == "stress"
    assert rows[0].expected_shock == pytest.approx(-0.05 + 0.5 * -0.01)


def test_aggregate_is_unweighted_sum_unless_weights_given():
    exposures = [
        FactorExposure(AS_OF, "AAA", {"mkt": 1.2, "smb": 0.1}),
        FactorExposure(AS_OF, "BBB", {"mkt": 0.8}),
    ]
    assert aggregate_exposure(exposures) == pytest.approx({"mkt": 2.0, "smb": 0.1})
    weighted = aggregate_exposure(exposures, weights={"AAA": 0.25, "BBB": 0.75})
    assert weighted == pytest.approx({"mkt": 0.9, "smb": 0.025})


def test_drift_covers_union_of_factors_and_flags_above_threshold():
    drift = {d.factor: d for d in exposure_drift({"mkt": 1.25, "mom": 0.05})}
    assert set(drift) == {"mkt", "mom", "smb", "hml"}
    assert drift["mkt"].drift == pytest.approx(0.25)
    assert drift["mkt"].notable
    assert drift["smb"].drift == pytest.approx(-0.15)
    assert not drift["smb"].notable
    assert not drift["mom"].notable


@pytest.mark.asyncio
async def test_report_keeps_probabilities_unnormalised():
    repository = InMemoryRegimeRepository(
        [
            RegimeProbabilities(date(2024, 2, 1), {"calm": 1.0}),
            RegimeProbabilities(AS_OF, {"calm": 0.5, "stress": 0.6}),
        ]
    )
    regime = await repository.latest_probabilities(AS_OF)
    report = build_risk_report([FactorExposure(AS_OF, "AAA", {"mkt": 1.0})], regime)

    assert report.as_of == AS_OF
    assert sum(s.probability for s in report.scenarios) == pytest.approx(1.1)
    assert report.probability_weighted_shock == pytest.approx(0.5 * -0.01 + 0.6 * -0.05)


def test_report_without_regime_data_has_no_scenarios():
    report = build_risk_report([FactorExposure(AS_OF, "AAA", {"mkt": 1.0})], None)
    assert report.as_of is None
    assert report.scenarios == []
    assert report.exposure == {"mkt": 1.0}
