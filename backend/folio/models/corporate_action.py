"""Global corporate-action catalogue and per-portfolio proposals."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Date, DateTime, Enum, ForeignKey, Index, Numeric, String, Text, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from folio.accounting.enums import CorporateActionType, ProposalStatus
from folio.db.base import Base


def _uuid_pk() -> UUID:
    return uuid4()


class CorporateAction(Base):
    __tablename__ = "corporate_actions"
    __table_args__ = (
        Index("ix_corporate_actions_symbol_date", "symbol", "ex_date"),
        Index("ix_corporate_actions_applied", "applied"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=_uuid_pk)
    symbol: Mapped[str] = mapped_column(String(20))
    type: Mapped[CorporateActionType] = mapped_column(Enum(CorporateActionType, name="corporate_action_type"))
    ex_date: Mapped[date] = mapped_column(Date)
    ratio: Mapped[Decimal | None] = mapped_column(Numeric(28, 10), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(28, 10), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    new_symbol: Mapped[str | None] = mapped_column(String(20), nullable=True)
    basis_allocation: Mapped[Decimal | None] = mapped_column(Numeric(12, 10), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    dedupe_key: Mapped[str] = mapped_column(String(255), unique=True)
    applied: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class PortfolioAction(Base):
    __tablename__ = "portfolio_actions"
    __table_args__ = (
        Index("ix_portfolio_actions_portfolio_status", "portfolio_id", "status"),
        Index("ix_portfolio_actions_corporate_action", "corporate_action_id"),
        Index(
            "uq_portfolio_actions_open",
            "portfolio_id",
            "corporate_action_id",
            unique=True,
            postgresql_where=text("status IN ('PENDING', 'APPROVED')"),
            sqlite_where=text("status IN ('PENDING', 'APPROVED')"),
        ),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=_uuid_pk)
    portfolio_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("portfolios.id", ondelete="CASCADE")
    )
    corporate_action_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("corporate_actions.id", ondelete="CASCADE")
    )
    status: Mapped[ProposalStatus] = mapped_column(
        Enum(ProposalStatus, name="proposal_status"), default=ProposalStatus.PENDING
    )
    affected_symbol: Mapped[str] = mapped_column(String(20))
    shares_affected: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    description: Mapped[str] = mapped_column(Text)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by_user_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow
    )

    corporate_action: Mapped[CorporateAction] = relationship(lazy="joined")


__all__ = ["CorporateAction", "PortfolioAction"]
