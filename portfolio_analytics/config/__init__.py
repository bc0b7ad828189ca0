"""Configuration package for the portfolio analytics service."""

from .settings import AppSettings, get_settings

__all__ = ["AppSettings", "get_settings"]
