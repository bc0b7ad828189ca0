"""Daily price cache and portfolio snapshot models."""

from __future__ import annotations

from datetime import date

from sqlalchemy import Boolean, Date, ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_analytics.db.base import Base


class HistoricalPrice(Base):
    __tablename__ = "historical_price"
    __table_args__ = (
        UniqueConstraint("ticker", "date", name="uq_historical_price_ticker_date"),
        Index("ix_historical_price_ticker_date", "ticker", "date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    ticker: Mapped[str] = mapped_column(String(20))
    date: Mapped[date] = mapped_column(Date)
    close_price: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False))


class PortfolioSnapshotRow(Base):
    __tablename__ = "portfolio_snapshot"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "date", name="uq_portfolio_snapshot_portfolio_date"),
        Index("ix_portfolio_snapshot_portfolio_date", "portfolio_id", "date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolio.id", ondelete="CASCADE"))
    date: Mapped[date] = mapped_column(Date)
    total_value: Mapped[float] = mapped_column(Numeric(24, 8, asdecimal=False))
    positions_value: Mapped[float] = mapped_column(Numeric(24, 8, asdecimal=False))
    cash: Mapped[float] = mapped_column(Numeric(24, 8, asdecimal=False))
    interest_earned: Mapped[float] = mapped_column(Numeric(24, 8, asdecimal=False))
    degraded: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str | None] = mapped_column(String(512), nullable=True)


__all__ = ["HistoricalPrice", "PortfolioSnapshotRow"]
