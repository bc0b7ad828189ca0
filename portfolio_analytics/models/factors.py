"""Factor return, exposure and regime probability models."""

from __future__ import annotations

from datetime import date

from sqlalchemy import JSON, Date, Float, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_analytics.db.base import Base


class FactorReturnRow(Base):
    __tablename__ = "factor_return"

    date: Mapped[date] = mapped_column(Date, primary_key=True)
    factors: Mapped[dict[str, float]] = mapped_column(JSON, default=dict)


class PositionReturnRow(Base):
    __tablename__ = "position_return"
    __table_args__ = (
        UniqueConstraint("ticker", "date", name="uq_position_return_ticker_date"),
        Index("ix_position_return_date", "date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    ticker: Mapped[str] = mapped_column(String(20))
    date: Mapped[date] = mapped_column(Date)
    daily_return: Mapped[float] = mapped_column(Float)


class FactorExposureRow(Base):
    __tablename__ = "factor_exposure"
    __table_args__ = (
        UniqueConstraint("date", "ticker", name="uq_factor_exposure_date_ticker"),
        Index("ix_factor_exposure_ticker_date", "ticker", "date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    date: Mapped[date] = mapped_column(Date)
    ticker: Mapped[str] = mapped_column(String(20))
    betas: Mapped[dict[str, float]] = mapped_column(JSON, default=dict)


class RegimeProbabilityRow(Base):
    __tablename__ = "regime_probability"

    as_of: Mapped[date] = mapped_column(Date, primary_key=True)
    probabilities: Mapped[dict[str, float]] = mapped_column(JSON, default=dict)


__all__ = ["FactorReturnRow", "PositionReturnRow", "FactorExposureRow", "RegimeProbabilityRow"]
