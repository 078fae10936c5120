"""Background jobs run by the scheduler.

Each job opens its own session so a failure in one never leaves another
with a poisoned transaction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import delete, or_, select

from folio.config import AppSettings, get_settings
from folio.db.database import Database
from folio.jobs.scheduler import JobContext, Schedule, Scheduler, parse_schedule
from folio.models import Holding, PasswordResetToken, Portfolio, RefreshToken
from folio.providers.service import MarketDataService
from folio.services.corporate_actions import run_detection
from folio.services.snapshots import delete_snapshots_before, retention_cutoff, snapshot_portfolio

logger = logging.getLogger(__name__)


class DetectionJob:
    name = "corporate_action_detection"

    def __init__(self, database: Database, schedule: Schedule) -> None:
        self.database = database
        self.schedule = schedule

    async def run(self, ctx: JobContext) -> dict[str, Any]:
        async with self.database.session() as session:
            report = await run_detection(session, checkpoint=ctx.raise_if_cancelled)
        logger.info(
            "Detection scanned %d actions, created %d proposals, %d failures",
            report.actions_scanned,
            report.proposals_created,
            len(report.failures),
        )
        return {
            "actions_scanned": report.actions_scanned,
            "proposals_created": report.proposals_created,
            "failures": report.failures,
        }


class PriceRefreshJob:
    """Drop cached market data and warm quotes for every held symbol."""

    name = "price_refresh"

    def __init__(self, database: Database, market_data: MarketDataService, schedule: Schedule) -> None:
        self.database = database
        self.market_data = market_data
        self.schedule = schedule

    async def run(self, ctx: JobContext) -> dict[str, Any]:
        async with self.database.session() as session:
            symbols = sorted(
                set(
                    (
                        await session.execute(select(Holding.symbol).where(Holding.quantity > 0).distinct())
                    ).scalars()
                )
            )
        ctx.raise_if_cancelled()
        self.market_data.clear_cache()
        prices = await self.market_data.current_prices(symbols)
        missing = [symbol for symbol in symbols if symbol not in prices]
        if missing:
            logger.warning("Price refresh found no quote for %s", ", ".join(missing))
        return {"symbols": len(symbols), "refreshed": len(prices), "missing": missing}


class SnapshotJob:
    name = "performance_snapshots"

    def __init__(
        self,
        database: Database,
        market_data: MarketDataService,
        schedule: Schedule,
        settings: AppSettings,
    ) -> None:
        self.database = database
        self.market_data = market_data
        self.schedule = schedule
        self.settings = settings

    async def run(self, ctx: JobContext) -> dict[str, Any]:
        today = date.today()
        created = existing = 0
        failures: list[dict[str, str]] = []
        async with self.database.session() as session:
            portfolio_ids = list((await session.execute(select(Portfolio.id))).scalars())
        for portfolio_id in portfolio_ids:
            ctx.raise_if_cancelled()
            async with self.database.session() as session:
                try:
                    portfolio = await session.get(Portfolio, portfolio_id)
                    if portfolio is None:
                        continue
                    _, was_created = await snapshot_portfolio(
                        session, portfolio, self.market_data, day=today, settings=self.settings
                    )
                except Exception as exc:
                    logger.exception("Snapshot for portfolio %s failed", portfolio_id)
                    failures.append({"portfolio_id": str(portfolio_id), "error": str(exc)})
                    continue
            if was_created:
                created += 1
            else:
                existing += 1
        return {"date": today.isoformat(), "created": created, "existing": existing, "failures": failures}


class CleanupJob:
    """Prune old snapshots and spent authentication tokens."""

    name = "cleanup"

    def __init__(self, database: Database, schedule: Schedule, settings: AppSettings) -> None:
        self.database = database
        self.schedule = schedule
        self.settings = settings

    async def run(self, ctx: JobContext) -> dict[str, Any]:
        now = datetime.now(timezone.utc)
        cutoff = retention_cutoff(self.settings.snapshot_retention_days)
        async with self.database.session() as session:
            snapshots = await delete_snapshots_before(session, cutoff)
            ctx.raise_if_cancelled()
            refresh = await session.execute(
                delete(RefreshToken).where(or_(RefreshToken.expires_at < now, RefreshToken.revoked_at.is_not(None)))
            )
            resets = await session.execute(
                delete(PasswordResetToken).where(
                    or_(PasswordResetToken.expires_at < now, PasswordResetToken.used_at.is_not(None))
                )
            )
            await session.commit()
        summary = {
            "snapshots_deleted": snapshots,
            "refresh_tokens_deleted": refresh.rowcount or 0,
            "reset_tokens_deleted": resets.rowcount or 0,
        }
        logger.info("Cleanup removed %s", summary)
        return summary


def build_scheduler(
    database: Database,
    market_data: MarketDataService,
    settings: AppSettings | None = None,
) -> Scheduler:
    settings = settings or get_settings()
    jobs = [
        DetectionJob(database, parse_schedule(settings.detection_schedule)),
        PriceRefreshJob(
            database,
            market_data,
            parse_schedule(settings.price_refresh_schedule, settings.price_refresh_time),
        ),
        SnapshotJob(database, market_data, parse_schedule(settings.snapshot_schedule), settings),
        CleanupJob(database, parse_schedule(settings.cleanup_schedule), settings),
    ]
    return Scheduler(
        jobs,
        tick_seconds=settings.scheduler_tick_seconds,
        job_timeout_seconds=settings.job_timeout_seconds,
    )


__all__ = [
    "CleanupJob",
    "DetectionJob",
    "PriceRefreshJob",
    "SnapshotJob",
    "build_scheduler",
]
