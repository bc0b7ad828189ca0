"""Schemas for job triggers."""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, Field


class JobRequest(BaseModel):
    as_of: date | None = Field(default=None, description="Defaults to today in the market timezone")


class JobResponse(BaseModel):
    job: str
    status: str
    as_of: date | None = None
    detail: dict[str, Any] = Field(default_factory=dict)


__all__ = ["JobRequest", "JobResponse"]
