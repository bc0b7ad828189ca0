"""Recompute and cache portfolio snapshots."""

from __future__ import annotations

import argparse
import asyncio
from datetime import date

from portfolio_analytics.core.logging import setup_logging
from portfolio_analytics.providers.alpha_vantage import get_alpha_vantage_client
from portfolio_analytics.services.jobs import PRECOMPUTED_PERIODS, run_snapshot_job
from portfolio_analytics.services.snapshots import Period


async def _run(as_of: date | None, periods: list[Period]) -> None:
    try:
        result = await run_snapshot_job(as_of, periods=periods)
    finally:
        await get_alpha_vantage_client().aclose()
    for portfolio_id, count in sorted(result.snapshots.items()):
        print(f"Portfolio {portfolio_id}: {count} snapshots")
    for portfolio_id in result.failed:
        print(f"Portfolio {portfolio_id}: replay failed")


def main() -> None:
    parser = argparse.ArgumentParser(description="Recompute cached portfolio snapshots")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None)
    parser.add_argument(
        "--period",
        action="append",
        dest="periods",
        choices=[p.value for p in Period],
        help="Chart period to precompute; defaults to 1Y and 5Y",
    )
    args = parser.parse_args()
    periods = [Period(p) for p in args.periods] if args.periods else list(PRECOMPUTED_PERIODS)
    setup_logging()
    asyncio.run(_run(args.as_of, periods))


if __name__ == "__main__":
    main()
