"""Transaction replay tests."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from portfolio_analytics.providers.alpha_vantage import LatestQuote
from portfolio_analytics.services.prices import HistoricalPriceStore, InMemoryPriceRepository, PriceSource
from portfolio_analytics.services.replay import (
    InsufficientSharesError,
    InvalidTransactionError,
    PortfolioAccount,
    TransactionOrderError,
    TransactionRecord,
    TransactionType,
    open_positions,
    replay_portfolio,
    sample_dates,
    sampling_stride,
)

CREATED = date(2024, 1, 1)
FAR_FUTURE = date(2030, 1, 1)


def _buy(tx_id, ticker, shares, price, day):
    return TransactionRecord(tx_id, ticker, TransactionType.BUY, shares, price, day)


def _sell(tx_id, ticker, shares, price, day):
    return TransactionRecord(tx_id, ticker, TransactionType.SELL, shares, price, day)


def _store(prices=None, provider=None, today=FAR_FUTURE):
    return HistoricalPriceStore(InMemoryPriceRepository(prices or {}), provider, today=lambda: today)


ACCOUNT = PortfolioAccount(portfolio_id=1, starting_cash=1_000_000.0, created_on=CREATED)
PATH_PRICES = {"PATH": {date(2024, 1, 2): 100.0, date(2024, 1, 3): 110.0, date(2024, 1, 5): 120.0}}


@pytest.mark.asyncio
async def test_single_buy_values_shares_at_resolved_price():
    transactions = [_buy(1, "PATH", 10, 100.0, date(2024, 1, 2))]
    snapshots = await replay_portfolio(
        ACCOUNT, transactions, date(2024, 1, 2), date(2024, 1, 7), price_store=_store(PATH_PRICES), today=FAR_FUTURE
    )

    values = {s.date: s.positions_value for s in snapshots}
    assert values == {
        date(2024, 1, 2): 1000.0,
        date(2024, 1, 3): 1100.0,
        date(2024, 1, 4): 1100.0,
        date(2024, 1, 5): 1200.0,
        date(2024, 1, 6): 1200.0,
        date(2024, 1, 7): 1200.0,
    }
    assert all(not s.degraded for s in snapshots)


@pytest.mark.asyncio
async def test_missing_prices_fall_back_to_average_cost_and_flag_it():
    transactions = [_buy(1, "PATH", 10, 100.0, date(2024, 1, 2)), _buy(2, "PATH", 10, 200.0, date(2024, 1, 3))]
    snapshots = await replay_portfolio(
        ACCOUNT, transactions, date(2024, 1, 2), date(2024, 1, 4), price_store=_store(), today=FAR_FUTURE
    )

    assert snapshots[0].positions_value == pytest.approx(1000.0)
    assert snapshots[-1].positions_value == pytest.approx(20 * 150.0)
    assert snapshots[-1].positions[0].price_source is PriceSource.FALLBACK
    assert snapshots[-1].degraded
    assert "using average cost for PATH" in snapshots[-1].notes


@pytest.mark.asyncio
async def test_price_before_history_uses_earliest_close_and_notes_it():
    transactions = [_buy(1, "PATH", 10, 90.0, date(2024, 1, 1))]
    snapshots = await replay_portfolio(
        ACCOUNT, transactions, date(2024, 1, 1), date(2024, 1, 1), price_store=_store(PATH_PRICES), today=FAR_FUTURE
    )

    assert snapshots[0].positions_value == 1000.0
    assert snapshots[0].positions[0].price_source is PriceSource.EARLIEST
    assert "earliest known price" in snapshots[0].notes


@pytest.mark.asyncio
async def test_total_value_is_exact_sum_of_components():
    transactions = [
        _buy(1, "PATH", 7, 101.37, date(2024, 1, 2)),
        _buy(2, "MSFT", 3.5, 377.11, date(2024, 1, 3)),
        _sell(3, "PATH", 2.25, 118.9, date(2024, 1, 5)),
    ]
    snapshots = await replay_portfolio(
        ACCOUNT,
        transactions,
        date(2024, 1, 1),
        date(2024, 2, 15),
        price_store=_store(PATH_PRICES),
        annual_rate=0.042,
        today=FAR_FUTURE,
    )

    assert snapshots
    for snap in snapshots:
        assert snap.total_value == snap.positions_value + snap.cash + snap.interest_earned


@pytest.mark.asyncio
async def test_replay_is_idempotent():
    transactions = [_buy(1, "PATH", 10, 100.0, date(2024, 1, 2)), _sell(2, "PATH", 4, 115.0, date(2024, 1, 4))]
    store = _store(PATH_PRICES)
    first = await replay_portfolio(ACCOUNT, transactions, CREATED, date(2024, 1, 20), price_store=store, today=FAR_FUTURE)
    second = await replay_portfolio(ACCOUNT, transactions, CREATED, date(2024, 1, 20), price_store=store, today=FAR_FUTURE)
    assert first == second


@pytest.mark.asyncio
async def test_fifty_million_account_after_one_year():
    day0 = date(2023, 1, 2)
    account = PortfolioAccount(portfolio_id=7, starting_cash=50_000_000.0, created_on=day0)
    transactions = [_buy(1, "FLAT", 100, 100.0, day0)]
    end = day0 + timedelta(days=365)

    snapshots = await replay_portfolio(
        account,
        transactions,
        end,
        end,
        price_store=_store({"FLAT": {day0: 100.0}}),
        annual_rate=0.042,
        today=FAR_FUTURE,
    )

    snap = snapshots[-1]
    expected_interest = (50_000_000 - 10_000) * 0.042
    assert snap.interest_earned == pytest.approx(expected_interest)
    assert snap.positions_value == 10_000.0
    assert snap.cash == pytest.approx(49_990_000.0)
    assert snap.total_value == pytest.approx(50_000_000 - 10_000 + 10_000 + expected_interest)


@pytest.mark.asyncio
async def test_sell_to_zero_removes_position():
    transactions = [_buy(1, "PATH", 10, 100.0, date(2024, 1, 2)), _sell(2, "PATH", 10, 120.0, date(2024, 1, 5))]
    snapshots = await replay_portfolio(
        ACCOUNT, transactions, date(2024, 1, 2), date(2024, 1, 8), price_store=_store(PATH_PRICES), today=FAR_FUTURE
    )

    after = [s for s in snapshots if s.date >= date(2024, 1, 5)]
    assert all(s.positions_value == 0.0 and s.positions == () for s in after)
    assert after[0].cash == pytest.approx(1_000_000.0 - 1000.0 + 1200.0)
    assert open_positions(transactions) == {}


@pytest.mark.asyncio
async def test_oversell_is_rejected():
    transactions = [_buy(1, "PATH", 10, 100.0, date(2024, 1, 2)), _sell(2, "PATH", 11, 120.0, date(2024, 1, 5))]
    with pytest.raises(InsufficientSharesError):
        await replay_portfolio(ACCOUNT, transactions, CREATED, date(2024, 1, 8), price_store=_store(PATH_PRICES))


@pytest.mark.asyncio
async def test_sell_of_unheld_ticker_is_rejected():
    transactions = [_sell(1, "PATH", 1, 120.0, date(2024, 1, 5))]
    with pytest.raises(InsufficientSharesError):
        await replay_portfolio(ACCOUNT, transactions, CREATED, date(2024, 1, 8), price_store=_store(PATH_PRICES))


@pytest.mark.asyncio
async def test_out_of_order_log_is_rejected():
    transactions = [_buy(1, "PATH", 10, 100.0, date(2024, 1, 5)), _buy(2, "PATH", 10, 100.0, date(2024, 1, 2))]
    with pytest.raises(TransactionOrderError):
        await replay_portfolio(ACCOUNT, transactions, CREATED, date(2024, 1, 8), price_store=_store(PATH_PRICES))


def test_open_positions_rejects_non_positive_shares():
    with pytest.raises(InvalidTransactionError):
        open_positions([_buy(1, "PATH", 0, 100.0, date(2024, 1, 2))])


@pytest.mark.asyncio
async def test_no_transactions_yields_no_snapshots():
    assert await replay_portfolio(ACCOUNT, [], CREATED, date(2024, 1, 8), price_store=_store()) == []


@pytest.mark.asyncio
async def test_today_uses_live_quote_and_live_cash(stub_market_data):
    today = date(2024, 1, 8)
    account = PortfolioAccount(portfolio_id=1, starting_cash=1_000_000.0, created_on=CREATED, live_cash=123.0)
    prices = {"PATH": {d: 100.0 for d in (today - timedelta(days=n) for n in range(1, 8))}}
    provider = stub_market_data(quotes={"PATH": LatestQuote(price=150.0, as_of=today)})
    transactions = [_buy(1, "PATH", 10, 100.0, date(2024, 1, 2))]

    snapshots = await replay_portfolio(
        account, transactions, date(2024, 1, 6), today, price_store=_store(prices, provider, today), today=today
    )

    live = snapshots[-1]
    assert live.date == today
    assert live.positions_value == 1500.0
    assert live.cash == 123.0
    assert live.positions[0].price_source is PriceSource.LIVE
    assert snapshots[0].positions_value == 1000.0
    assert snapshots[0].cash == pytest.approx(999_000.0)


def test_stride_is_daily_up_to_two_years_and_weekly_beyond():
    assert sampling_stride(date(2024, 1, 1), date(2025, 1, 1)) == 1
    assert sampling_stride(date(2019, 1, 1), date(2024, 1, 1)) == 7


def test_sample_dates_always_include_end():
    dates = sample_dates(date(2024, 1, 1), date(2024, 1, 17), 7)
    assert dates == [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15), date(2024, 1, 17)]
