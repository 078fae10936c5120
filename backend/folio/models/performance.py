"""Daily performance snapshot rows."""

from __future__ import annotations

import datetime as dt
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from folio.db.base import Base


def _uuid_pk() -> UUID:
    return uuid4()


class PerformanceSnapshot(Base):
    __tablename__ = "performance_snapshots"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "date", name="uq_performance_snapshot_portfolio_date"),
        Index("ix_performance_snapshots_date", "date"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=_uuid_pk)
    portfolio_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("portfolios.id", ondelete="CASCADE")
    )
    date: Mapped[dt.date] = mapped_column(Date)
    total_value: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    total_cost_basis: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    total_return: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    total_return_pct: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    day_change: Mapped[Decimal | None] = mapped_column(Numeric(28, 10), nullable=True)
    day_change_pct: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


__all__ = ["PerformanceSnapshot"]
