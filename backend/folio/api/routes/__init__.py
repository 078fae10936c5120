"""Route registration helpers."""

from __future__ import annotations

from fastapi import APIRouter

from .actions import catalogue_router as corporate_actions_router
from .actions import router as actions_router
from .holdings import router as holdings_router
from .imports import router as imports_router
from .jobs import health_router
from .jobs import router as jobs_router
from .performance import router as performance_router
from .portfolios import router as portfolios_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(portfolios_router, tags=["portfolios"])
api_router.include_router(imports_router, prefix="/portfolios", tags=["imports"])
api_router.include_router(holdings_router, prefix="/portfolios", tags=["holdings"])
api_router.include_router(actions_router, prefix="/portfolios", tags=["actions"])
api_router.include_router(performance_router, prefix="/portfolios", tags=["performance"])
api_router.include_router(corporate_actions_router, prefix="/corporate-actions", tags=["corporate-actions"])
api_router.include_router(jobs_router, prefix="/jobs", tags=["jobs"])

__all__ = ["api_router"]
