"""Portfolio, ledger, import batch and the derived holding / lot / gain tables."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from folio.accounting.enums import ActionLeg, CostBasisMethod, TransactionType
from folio.db.base import Base

QUANTITY = Numeric(28, 10)
AMOUNT = Numeric(28, 10)
JSONType = JSON().with_variant(JSONB, "postgresql")


def _uuid_pk() -> UUID:
    return uuid4()


class Portfolio(Base):
    __tablename__ = "portfolios"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_portfolio_user_name"),)

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=_uuid_pk)
    user_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    base_currency: Mapped[str] = mapped_column(String(3), default="USD")
    cost_basis_method: Mapped[CostBasisMethod] = mapped_column(
        Enum(CostBasisMethod, name="cost_basis_method"), default=CostBasisMethod.FIFO
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow
    )

    transactions: Mapped[list["Transaction"]] = relationship(
        back_populates="portfolio", cascade="all, delete-orphan", passive_deletes=True
    )
    holdings: Mapped[list["Holding"]] = relationship(cascade="all, delete-orphan", passive_deletes=True)
    batches: Mapped[list["ImportBatch"]] = relationship(
        back_populates="portfolio", cascade="all, delete-orphan", passive_deletes=True
    )


class ImportBatch(Base):
    __tablename__ = "import_batches"
    __table_args__ = (Index("ix_import_batches_portfolio", "portfolio_id", "imported_at"),)

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=_uuid_pk)
    portfolio_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("portfolios.id", ondelete="CASCADE")
    )
    format_tag: Mapped[str] = mapped_column(String(32), default="generic")
    imported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    portfolio: Mapped[Portfolio] = relationship(back_populates="batches")
    transactions: Mapped[list["Transaction"]] = relationship(
        back_populates="batch", cascade="all, delete-orphan", passive_deletes=True
    )


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_portfolio_symbol_date", "portfolio_id", "symbol", "trade_date"),
        Index("ix_transactions_portfolio_order", "portfolio_id", "trade_date", "sequence"),
        Index("ix_transactions_batch", "batch_id"),
        CheckConstraint("quantity > 0", name="chk_transaction_quantity"),
        CheckConstraint("commission >= 0", name="chk_transaction_commission"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=_uuid_pk)
    portfolio_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("portfolios.id", ondelete="CASCADE")
    )
    batch_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("import_batches.id", ondelete="CASCADE"), nullable=True
    )
    corporate_action_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("corporate_actions.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[TransactionType] = mapped_column(Enum(TransactionType, name="transaction_type"))
    symbol: Mapped[str] = mapped_column(String(20))
    trade_date: Mapped[date] = mapped_column(Date)
    quantity: Mapped[Decimal] = mapped_column(QUANTITY)
    price: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    commission: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    ratio: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    related_symbol: Mapped[str | None] = mapped_column(String(20), nullable=True)
    leg: Mapped[ActionLeg | None] = mapped_column(Enum(ActionLeg, name="action_leg"), nullable=True)
    basis_allocation: Mapped[Decimal | None] = mapped_column(Numeric(12, 10), nullable=True)
    lot_method: Mapped[CostBasisMethod | None] = mapped_column(
        Enum(CostBasisMethod, name="cost_basis_method"), nullable=True
    )
    lot_selections: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    raw_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    sequence: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow
    )

    portfolio: Mapped[Portfolio] = relationship(back_populates="transactions")
    batch: Mapped[Optional[ImportBatch]] = relationship(back_populates="transactions")

    @property
    def total_cost(self) -> Decimal:
        commission = self.commission or Decimal("0")
        if self.price is None:
            return commission
        return self.quantity * self.price + commission

    @property
    def proceeds(self) -> Decimal:
        price = self.price or Decimal("0")
        return self.quantity * price - (self.commission or Decimal("0"))


class Holding(Base):
    __tablename__ = "holdings"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "symbol", name="uq_holding_portfolio_symbol"),
        Index("ix_holdings_symbol", "symbol"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=_uuid_pk)
    portfolio_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("portfolios.id", ondelete="CASCADE")
    )
    symbol: Mapped[str] = mapped_column(String(20))
    quantity: Mapped[Decimal] = mapped_column(QUANTITY)
    cost_basis: Mapped[Decimal] = mapped_column(AMOUNT)
    average_cost: Mapped[Decimal] = mapped_column(AMOUNT)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow
    )


class TaxLot(Base):
    __tablename__ = "tax_lots"
    __table_args__ = (
        Index("ix_tax_lots_portfolio_symbol", "portfolio_id", "symbol"),
        Index("ix_tax_lots_acquired_on", "acquired_on"),
        CheckConstraint("remaining_quantity >= 0", name="chk_tax_lot_remaining"),
        CheckConstraint("cost_basis >= 0", name="chk_tax_lot_cost_basis"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    portfolio_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("portfolios.id", ondelete="CASCADE")
    )
    transaction_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("transactions.id", ondelete="CASCADE")
    )
    symbol: Mapped[str] = mapped_column(String(20))
    acquired_on: Mapped[date] = mapped_column(Date)
    original_quantity: Mapped[Decimal] = mapped_column(QUANTITY)
    remaining_quantity: Mapped[Decimal] = mapped_column(QUANTITY)
    cost_basis: Mapped[Decimal] = mapped_column(AMOUNT)
    cost_per_share: Mapped[Decimal] = mapped_column(AMOUNT)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    position: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def is_open(self) -> bool:
        return self.remaining_quantity > 0


class RealizedGain(Base):
    __tablename__ = "realized_gains"
    __table_args__ = (
        Index("ix_realized_gains_portfolio_disposed", "portfolio_id", "disposed_on"),
        Index("ix_realized_gains_sell", "sell_transaction_id"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    portfolio_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("portfolios.id", ondelete="CASCADE")
    )
    sell_transaction_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("transactions.id", ondelete="CASCADE")
    )
    lot_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True))
    symbol: Mapped[str] = mapped_column(String(20))
    acquired_on: Mapped[date] = mapped_column(Date)
    disposed_on: Mapped[date] = mapped_column(Date)
    quantity: Mapped[Decimal] = mapped_column(QUANTITY)
    cost_basis: Mapped[Decimal] = mapped_column(AMOUNT)
    proceeds: Mapped[Decimal] = mapped_column(AMOUNT)
    gain: Mapped[Decimal] = mapped_column(AMOUNT)
    long_term: Mapped[bool] = mapped_column(Boolean, default=False)


__all__ = [
    "Holding",
    "ImportBatch",
    "Portfolio",
    "RealizedGain",
    "TaxLot",
    "Transaction",
]
