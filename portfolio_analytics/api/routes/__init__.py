"""Route registration helpers."""

from __future__ import annotations

from fastapi import APIRouter

from .jobs import router as jobs_router
from .portfolio import router as portfolio_router
from .risk import router as risk_router

api_router = APIRouter()
api_router.include_router(portfolio_router, prefix="/portfolio", tags=["portfolio"])
api_router.include_router(risk_router, prefix="/risk", tags=["risk"])
api_router.include_router(jobs_router, prefix="/jobs", tags=["jobs"])

__all__ = ["api_router"]
