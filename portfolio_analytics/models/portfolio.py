"""Portfolio and transaction models."""

from __future__ import annotations

from datetime import date

from sqlalchemy import Date, Enum, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portfolio_analytics.config import get_settings
from portfolio_analytics.db.base import Base

TRANSACTION_TYPES = ("buy", "sell")


def _default_starting_cash() -> float:
    return get_settings().default_starting_cash


class Portfolio(Base):
    __tablename__ = "portfolio"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(128), default="Main")
    starting_cash: Mapped[float] = mapped_column(Numeric(20, 6, asdecimal=False), default=_default_starting_cash)
    current_cash: Mapped[float | None] = mapped_column(Numeric(20, 6, asdecimal=False), nullable=True)
    created_on: Mapped[date] = mapped_column(Date)

    transactions: Mapped[list["Transaction"]] = relationship(
        back_populates="portfolio", cascade="all, delete-orphan"
    )


class Transaction(Base):
    __tablename__ = "portfolio_transaction"
    __table_args__ = (
        Index("ix_transaction_portfolio_date", "portfolio_id", "transaction_date", "id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolio.id", ondelete="CASCADE"))
    ticker: Mapped[str] = mapped_column(String(20), index=True)
    type: Mapped[str] = mapped_column(Enum(*TRANSACTION_TYPES, name="transaction_type"))
    shares: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False))
    price_per_share: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False))
    total_amount: Mapped[float] = mapped_column(Numeric(20, 6, asdecimal=False))
    transaction_date: Mapped[date] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(String(255), nullable=True)

    portfolio: Mapped[Portfolio] = relationship(back_populates="transactions")


__all__ = ["Portfolio", "Transaction", "TRANSACTION_TYPES"]
