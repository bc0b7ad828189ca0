"""Logging setup tests."""

from __future__ import annotations

import logging

from portfolio_analytics.config import AppSettings
from portfolio_analytics.core.logging import setup_logging


def test_setup_logging_installs_a_single_stdout_handler(monkeypatch):
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(root, "level", root.level)

    setup_logging(logging.DEBUG)
    setup_logging()

    assert len(root.handlers) == 1
    assert root.level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING


def test_settings_for_logging_mask_credentials():
    settings = AppSettings(alphavantage_api_key="secret", database_url="postgresql+asyncpg://u:p@db/app")

    logged = settings.dict_for_logging()

    assert logged["alphavantage_api_key"] == "***"
    assert logged["database_url"] == "***"
    assert logged["timezone"] == settings.timezone
