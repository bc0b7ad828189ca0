"""Transaction replay: rebuild a portfolio's daily value from its trade log.

The replay is a single forward pass over the transaction log. Each sampled
date first consumes every transaction dated on or before it, accruing cash
interest up to each transaction, and then values the open positions against
the historical price store. The snapshot for "today" uses live quotes and the
portfolio's live cash balance when they are available.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, Mapping, Protocol, Sequence

from portfolio_analytics.config import get_settings
from portfolio_analytics.services.interest import CashAccrual, daily_rate
from portfolio_analytics.services.prices import (
    HistoricalPriceStore,
    PriceSeries,
    PriceSource,
    ResolvedPrice,
)

logger = logging.getLogger(__name__)

_SHARE_EPSILON = 1e-9
WEEKLY_STRIDE = 7


class TransactionType(str, Enum):
    BUY = "buy"
    SELL = "sell"


class ReplayIntegrityError(ValueError):
    """Raised when the transaction log cannot be replayed as recorded."""


class InsufficientSharesError(ReplayIntegrityError):
    pass


class TransactionOrderError(ReplayIntegrityError):
    pass


class InvalidTransactionError(ReplayIntegrityError):
    """Raised for a stored transaction with an unknown type or non-positive amounts."""


@dataclass(frozen=True)
class TransactionRecord:
    id: int | str
    ticker: str
    type: TransactionType
    shares: float
    price_per_share: float
    date: date
    total_amount: float | None = None

    @property
    def amount(self) -> float:
        if self.total_amount is not None:
            return self.total_amount
        return self.shares * self.price_per_share


@dataclass(frozen=True)
class PortfolioAccount:
    portfolio_id: int
    starting_cash: float
    created_on: date
    live_cash: float | None = None


@dataclass
class Position:
    ticker: str
    shares: float = 0.0
    cost_basis_total: float = 0.0

    @property
    def average_cost(self) -> float:
        return self.cost_basis_total / self.shares if self.shares > 0 else 0.0


@dataclass(frozen=True)
class PositionValuation:
    ticker: str
    shares: float
    price: float
    price_source: PriceSource
    market_value: float


@dataclass(frozen=True)
class PortfolioSnapshot:
    portfolio_id: int
    date: date
    total_value: float
    positions_value: float
    cash: float
    interest_earned: float
    positions: tuple[PositionValuation, ...] = field(default=())
    degraded: bool = False
    notes: str | None = None


class PortfolioRepository(Protocol):
    async def list_portfolio_ids(self) -> list[int]:
        ...

    async def load(self, portfolio_id: int) -> tuple[PortfolioAccount, list[TransactionRecord]] | None:
        ...


class InMemoryPortfolioRepository:
    def __init__(
        self,
        portfolios: Mapping[int, tuple[PortfolioAccount, Sequence[TransactionRecord]]] | None = None,
    ) -> None:
        self._portfolios = dict(portfolios or {})

    async def list_portfolio_ids(self) -> list[int]:
        return sorted(self._portfolios)

    async def load(self, portfolio_id: int) -> tuple[PortfolioAccount, list[TransactionRecord]] | None:
        found = self._portfolios.get(portfolio_id)
        if found is None:
            return None
        account, transactions = found
        return account, sorted(transactions, key=lambda tx: tx.date)


def validate_transaction(tx: TransactionRecord) -> None:
    try:
        TransactionType(tx.type)
    except ValueError as exc:
        raise InvalidTransactionError(f"unsupported transaction type {tx.type!r}") from exc
    if tx.shares <= 0:
        raise InvalidTransactionError(f"transaction {tx.id}: shares must be > 0")
    if tx.price_per_share <= 0:
        raise InvalidTransactionError(f"transaction {tx.id}: price_per_share must be > 0")
    if tx.total_amount is not None and tx.total_amount < 0:
        raise InvalidTransactionError(f"transaction {tx.id}: total_amount cannot be negative")


def _check_order(transactions: Sequence[TransactionRecord]) -> None:
    for previous, current in zip(transactions, transactions[1:]):
        if current.date < previous.date:
            raise TransactionOrderError(
                f"transaction {current.id} dated {current.date} follows {previous.id} dated {previous.date}"
            )


class PositionBook:
    """Open positions keyed by ticker, maintained at average cost."""

    def __init__(self) -> None:
        self.positions: dict[str, Position] = {}

    def apply(self, tx: TransactionRecord) -> float:
        """Apply ``tx`` and return its signed cash impact."""

        if TransactionType(tx.type) is TransactionType.BUY:
            position = self.positions.setdefault(tx.ticker, Position(ticker=tx.ticker))
            position.shares += tx.shares
            position.cost_basis_total += tx.amount
            return -tx.amount

        position = self.positions.get(tx.ticker)
        held = position.shares if position else 0.0
        if position is None or tx.shares > held + _SHARE_EPSILON:
            raise InsufficientSharesError(
                f"sell of {tx.shares} {tx.ticker} on {tx.date} exceeds {held} held shares"
            )
        average_cost = position.average_cost
        position.shares -= tx.shares
        if abs(position.shares) <= _SHARE_EPSILON:
            del self.positions[tx.ticker]
        else:
            position.cost_basis_total = position.shares * average_cost
        return tx.amount


def open_positions(transactions: Iterable[TransactionRecord], as_of: date | None = None) -> dict[str, Position]:
    """Positions left open after replaying ``transactions`` up to ``as_of``."""

    ordered = list(transactions)
    _check_order(ordered)
    book = PositionBook()
    for tx in ordered:
        if as_of is not None and tx.date > as_of:
            break
        validate_transaction(tx)
        book.apply(tx)
    return book.positions


def sampling_stride(start: date, end: date, threshold_days: int | None = None) -> int:
    """Daily sampling, or weekly for ranges longer than ``threshold_days``."""

    if threshold_days is None:
        threshold_days = get_settings().weekly_stride_threshold_days
    return WEEKLY_STRIDE if (end - start).days > threshold_days else 1


def sample_dates(start: date, end: date, stride: int = 1) -> list[date]:
    """Dates from ``start`` to ``end`` inclusive; ``end`` is always included."""

    if stride < 1:
        raise ValueError("stride must be >= 1")
    span = (end - start).days
    dates = [start + timedelta(days=offset) for offset in range(0, span + 1, stride)]
    if dates and dates[-1] != end:
        dates.append(end)
    return dates


async def _load_series(price_store: HistoricalPriceStore, tickers: Iterable[str]) -> dict[str, PriceSeries]:
    unique = list(dict.fromkeys(tickers))
    loaded = await asyncio.gather(*(price_store.load_series(ticker) for ticker in unique))
    return dict(zip(unique, loaded))


async def replay_portfolio(
    account: PortfolioAccount,
    transactions: Sequence[TransactionRecord],
    start: date,
    end: date,
    *,
    price_store: HistoricalPriceStore,
    annual_rate: float | None = None,
    today: date | None = None,
    stride: int | None = None,
) -> list[PortfolioSnapshot]:
    """Replay ``transactions`` and emit one snapshot per sampled date in ``[start, end]``.

    Raises :class:`ReplayIntegrityError` when the log is out of date order or
    sells more shares than are held.
    """

    if start > end:
        raise ValueError("start cannot be after end")
    if not transactions:
        return []
    _check_order(transactions)
    for tx in transactions:
        validate_transaction(tx)

    settings = get_settings()
    rate = settings.cash_interest_rate if annual_rate is None else annual_rate
    today = today or price_store.today()
    stride = stride or sampling_stride(start, end, settings.weekly_stride_threshold_days)

    series = await _load_series(price_store, (tx.ticker for tx in transactions if tx.date <= end))
    live_prices: dict[str, float | None] = {}
    fallback_logged: set[str] = set()

    accrual = CashAccrual(
        balance=account.starting_cash,
        last_update=account.created_on,
        rate_per_day=daily_rate(rate),
    )
    book = PositionBook()
    tx_index = 0
    snapshots: list[PortfolioSnapshot] = []

    for day in sample_dates(start, end, stride):
        while tx_index < len(transactions) and transactions[tx_index].date <= day:
            tx = transactions[tx_index]
            tx_index += 1
            accrual.apply(book.apply(tx), tx.date)

        interest = accrual.interest_as_of(day)
        is_today = day == today

        valuations: list[PositionValuation] = []
        notes: list[str] = []
        for ticker, position in book.positions.items():
            resolved: ResolvedPrice | None = None
            if is_today:
                if ticker not in live_prices:
                    live_prices[ticker] = await price_store.get_live_price(ticker)
                live = live_prices[ticker]
                if live is not None:
                    resolved = ResolvedPrice(live, PriceSource.LIVE, day)
            if resolved is None and ticker in series:
                resolved = series[ticker].resolve(day)
            if resolved is None:
                resolved = ResolvedPrice(position.average_cost, PriceSource.FALLBACK)
                notes.append(f"using average cost for {ticker}, historical price unavailable")
                if ticker not in fallback_logged:
                    fallback_logged.add(ticker)
                    logger.warning(
                        "No price for %s on %s; valuing at average cost %.4f",
                        ticker,
                        day,
                        position.average_cost,
                    )
            elif resolved.source is PriceSource.EARLIEST:
                notes.append(f"using earliest known price for {ticker} ({resolved.as_of})")
            valuations.append(
                PositionValuation(
                    ticker=ticker,
                    shares=position.shares,
                    price=resolved.price,
                    price_source=resolved.source,
                    market_value=position.shares * resolved.price,
                )
            )

        positions_value = sum((v.market_value for v in valuations), 0.0)
        cash = accrual.balance
        if is_today and account.live_cash is not None:
            cash = account.live_cash
        snapshots.append(
            PortfolioSnapshot(
                portfolio_id=account.portfolio_id,
                date=day,
                total_value=positions_value + cash + interest,
                positions_value=positions_value,
                cash=cash,
                interest_earned=interest,
                positions=tuple(valuations),
                degraded=bool(notes),
                notes="; ".join(notes) or None,
            )
        )
    return snapshots


__all__ = [
    "InMemoryPortfolioRepository",
    "InsufficientSharesError",
    "InvalidTransactionError",
    "PortfolioAccount",
    "PortfolioRepository",
    "PortfolioSnapshot",
    "Position",
    "PositionBook",
    "PositionValuation",
    "ReplayIntegrityError",
    "TransactionOrderError",
    "TransactionRecord",
    "TransactionType",
    "open_positions",
    "replay_portfolio",
    "sample_dates",
    "sampling_stride",
    "validate_transaction",
]
