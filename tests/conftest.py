import asyncio
import inspect
import pathlib
import sys
from contextlib import asynccontextmanager
from datetime import date, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portfolio_analytics.db.init import init_database  # noqa: E402
from portfolio_analytics.services.prices import HistoricalPricePoint  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            testargs = {arg: pyfuncitem.funcargs[arg] for arg in pyfuncitem._fixtureinfo.argnames}
            loop.run_until_complete(test_function(**testargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


class StubMarketData:
    """Market-data provider returning canned closes and quotes."""

    def __init__(self, closes=None, quotes=None, errors=None, delay=0.0) -> None:
        self.closes = closes or {}
        self.quotes = quotes or {}
        self.errors = errors or {}
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def get_daily_closes(self, ticker, output_size="compact"):
        self.calls.append((ticker, output_size))
        if self.delay:
            await asyncio.sleep(self.delay)
        if ticker in self.errors:
            raise self.errors[ticker]
        return list(self.closes.get(ticker, []))

    async def get_latest_quote(self, ticker):
        self.calls.append((ticker, "quote"))
        if self.delay:
            await asyncio.sleep(self.delay)
        if ticker in self.errors:
            raise self.errors[ticker]
        return self.quotes.get(ticker)


def daily_points(ticker: str, start: date, closes: list[float]) -> list[HistoricalPricePoint]:
    return [
        HistoricalPricePoint(ticker=ticker, date=start + timedelta(days=offset), close_price=close)
        for offset, close in enumerate(closes)
    ]


@pytest.fixture
def stub_market_data():
    return StubMarketData


@pytest.fixture
def make_points():
    return daily_points


@pytest.fixture
def sqlite_database(tmp_path):
    """Async context manager yielding a session factory bound to a fresh SQLite file."""

    @asynccontextmanager
    async def _open():
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'analytics.db'}")
        try:
            await init_database(engine)
            yield async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
        finally:
            await engine.dispose()

    return _open
