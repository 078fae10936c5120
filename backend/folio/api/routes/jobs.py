"""Scheduler status, manual job triggers and the health check."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from folio.api.dependencies import get_current_user, get_scheduler
from folio.jobs.scheduler import Scheduler
from folio.models import User
from folio.schemas import JobStatusSchema

router = APIRouter()
health_router = APIRouter()


@health_router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    scheduler: Scheduler = request.app.state.scheduler
    return {
        "status": "ok",
        "database": request.app.state.database.dialect,
        "scheduler_running": scheduler.running,
        "market_data_cache_size": request.app.state.market_data.cache_size,
    }


@router.get("", response_model=list[JobStatusSchema])
async def get_jobs(
    scheduler: Scheduler = Depends(get_scheduler),
    current_user: User = Depends(get_current_user),
) -> list[JobStatusSchema]:
    return [JobStatusSchema.model_validate(item) for item in scheduler.statuses()]


@router.get("/{name}", response_model=JobStatusSchema)
async def get_job(
    name: str,
    scheduler: Scheduler = Depends(get_scheduler),
    current_user: User = Depends(get_current_user),
) -> JobStatusSchema:
    return JobStatusSchema.model_validate(scheduler.status(name))


@router.post("/{name}/run", response_model=JobStatusSchema)
async def run_job(
    name: str,
    scheduler: Scheduler = Depends(get_scheduler),
    current_user: User = Depends(get_current_user),
) -> JobStatusSchema:
    """Run a job now and wait for it; failures are reported on the returned status."""

    return JobStatusSchema.model_validate(await scheduler.run_once(name))


__all__ = ["health_router", "router"]
