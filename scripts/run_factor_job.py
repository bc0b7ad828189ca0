"""Run the daily factor exposure job once."""

from __future__ import annotations

import argparse
import asyncio
from datetime import date

from portfolio_analytics.core.logging import setup_logging
from portfolio_analytics.services.jobs import run_daily_factor_job


async def _run(as_of: date | None) -> None:
    exposures = await run_daily_factor_job(as_of)
    for exposure in exposures:
        betas = ", ".join(f"{k}={v:.3f}" for k, v in sorted(exposure.betas.items()))
        print(f"{exposure.ticker} {exposure.date}: {betas}")
    print(f"Upserted {len(exposures)} exposure rows")


def main() -> None:
    parser = argparse.ArgumentParser(description="Estimate rolling factor betas for held tickers")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None)
    args = parser.parse_args()
    setup_logging()
    asyncio.run(_run(args.as_of))


if __name__ == "__main__":
    main()
