"""Simple (non-compounding) interest accrual on an idle cash balance."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

DAYS_PER_YEAR = 365


def daily_rate(annual_rate: float) -> float:
    return annual_rate / DAYS_PER_YEAR


def interest_earned(cash_balance: float, rate_per_day: float, days_elapsed: int) -> float:
    """Interest on ``cash_balance`` for ``days_elapsed`` days, floored at zero days."""

    return cash_balance * rate_per_day * max(0, days_elapsed)


@dataclass
class CashAccrual:
    """Running cash balance that accrues interest piecewise between cash events.

    Interest accumulated so far is kept apart from ``balance``; it is never
    folded back into the balance that earns the next period's interest.
    """

    balance: float
    last_update: date
    rate_per_day: float
    accrued: float = field(default=0.0)

    def accrue_to(self, day: date) -> None:
        """Book interest on the balance in effect from ``last_update`` to ``day``."""

        days = (day - self.last_update).days
        if days > 0:
            self.accrued += interest_earned(self.balance, self.rate_per_day, days)
        self.last_update = day

    def apply(self, amount: float, day: date) -> None:
        """Accrue up to ``day`` and then move the balance by ``amount``."""

        self.accrue_to(day)
        self.balance += amount

    def interest_as_of(self, day: date) -> float:
        """Accrued interest plus the pending amount since the last cash event."""

        pending = interest_earned(self.balance, self.rate_per_day, (day - self.last_update).days)
        return self.accrued + pending


__all__ = ["CashAccrual", "DAYS_PER_YEAR", "daily_rate", "interest_earned"]
