"""CLI wrapper for the price backfill job."""

from __future__ import annotations

import argparse
import asyncio
from datetime import date

from portfolio_analytics.core.logging import setup_logging
from portfolio_analytics.providers.alpha_vantage import get_alpha_vantage_client
from portfolio_analytics.services.jobs import run_price_backfill_job


async def _run(tickers: list[str] | None, as_of: date | None) -> None:
    try:
        report = await run_price_backfill_job(as_of, tickers=tickers)
    finally:
        await get_alpha_vantage_client().aclose()
    print(
        f"Refreshed {len(report.refreshed)}, unchanged {len(report.unchanged)}, "
        f"failed {len(report.failed)}, skipped {len(report.skipped)}"
    )
    if report.rate_limited:
        print("Stopped early: Alpha Vantage rate limit reached")


def main() -> None:
    parser = argparse.ArgumentParser(description="Top up cached daily closes from Alpha Vantage")
    parser.add_argument("--ticker", action="append", dest="tickers", help="Repeat to backfill several tickers")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None)
    args = parser.parse_args()
    setup_logging()
    asyncio.run(_run(args.tickers, args.as_of))


if __name__ == "__main__":
    main()
