"""Database model exports."""

from .daily import HistoricalPrice, PortfolioSnapshotRow
from .factors import FactorExposureRow, FactorReturnRow, PositionReturnRow, RegimeProbabilityRow
from .portfolio import TRANSACTION_TYPES, Portfolio, Transaction

__all__ = [
    "Portfolio",
    "Transaction",
    "TRANSACTION_TYPES",
    "HistoricalPrice",
    "PortfolioSnapshotRow",
    "FactorReturnRow",
    "PositionReturnRow",
    "FactorExposureRow",
    "RegimeProbabilityRow",
]
