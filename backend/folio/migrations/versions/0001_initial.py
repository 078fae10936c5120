"""Initial schema for the folio service.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


uuid = postgresql.UUID(as_uuid=True)
quantity = sa.Numeric(28, 10)

transaction_type = sa.Enum(
    "BUY",
    "SELL",
    "DIVIDEND",
    "SPLIT",
    "MERGER",
    "SPINOFF",
    "TICKER_CHANGE",
    "DIVIDEND_REINVEST",
    name="transaction_type",
)
cost_basis_method = sa.Enum("FIFO", "LIFO", "SPECIFIC_LOT", name="cost_basis_method")
# Second use of the same type; the portfolios table creates it.
lot_method = postgresql.ENUM("FIFO", "LIFO", "SPECIFIC_LOT", name="cost_basis_method", create_type=False)
action_leg = sa.Enum("SOURCE", "TARGET", name="action_leg")
corporate_action_type = sa.Enum(
    "SPLIT", "DIVIDEND", "MERGER", "SPINOFF", "TICKER_CHANGE", name="corporate_action_type"
)
proposal_status = sa.Enum("PENDING", "APPROVED", "REJECTED", "APPLIED", name="proposal_status")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", uuid, primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"])

    for table, marker in (("refresh_tokens", "revoked_at"), ("password_reset_tokens", "used_at")):
        op.create_table(
            table,
            sa.Column("id", uuid, primary_key=True),
            sa.Column("user_id", uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("token_hash", sa.String(length=255), nullable=False, unique=True),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column(marker, sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        )
        op.create_index(f"ix_{table}_expires_at", table, ["expires_at"])

    op.create_table(
        "portfolios",
        sa.Column("id", uuid, primary_key=True),
        sa.Column("user_id", uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("base_currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("cost_basis_method", cost_basis_method, nullable=False, server_default="FIFO"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_portfolio_user_name"),
    )
    op.create_index("ix_portfolios_user_id", "portfolios", ["user_id"])

    op.create_table(
        "import_batches",
        sa.Column("id", uuid, primary_key=True),
        sa.Column("portfolio_id", uuid, sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column("format_tag", sa.String(length=32), nullable=False, server_default="generic"),
        sa.Column("imported_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_import_batches_portfolio", "import_batches", ["portfolio_id", "imported_at"])

    op.create_table(
        "corporate_actions",
        sa.Column("id", uuid, primary_key=True),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("type", corporate_action_type, nullable=False),
        sa.Column("ex_date", sa.Date(), nullable=False),
        sa.Column("ratio", quantity, nullable=True),
        sa.Column("amount", quantity, nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("new_symbol", sa.String(length=20), nullable=True),
        sa.Column("basis_allocation", sa.Numeric(12, 10), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("dedupe_key", sa.String(length=255), nullable=False, unique=True),
        sa.Column("applied", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_corporate_actions_symbol_date", "corporate_actions", ["symbol", "ex_date"])
    op.create_index("ix_corporate_actions_applied", "corporate_actions", ["applied"])

    op.create_table(
        "transactions",
        sa.Column("id", uuid, primary_key=True),
        sa.Column("portfolio_id", uuid, sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column("batch_id", uuid, sa.ForeignKey("import_batches.id", ondelete="CASCADE"), nullable=True),
        sa.Column(
            "corporate_action_id",
            uuid,
            sa.ForeignKey("corporate_actions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("trade_date", sa.Date(), nullable=False),
        sa.Column("quantity", quantity, nullable=False),
        sa.Column("price", quantity, nullable=True),
        sa.Column("commission", quantity, nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("ratio", quantity, nullable=True),
        sa.Column("related_symbol", sa.String(length=20), nullable=True),
        sa.Column("leg", action_leg, nullable=True),
        sa.Column("basis_allocation", sa.Numeric(12, 10), nullable=True),
        sa.Column("lot_method", lot_method, nullable=True),
        sa.Column("lot_selections", postgresql.JSONB(), nullable=True),
        sa.Column("raw_data", postgresql.JSONB(), nullable=True),
        sa.Column("sequence", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("quantity > 0", name="chk_transaction_quantity"),
        sa.CheckConstraint("commission >= 0", name="chk_transaction_commission"),
    )
    op.create_index(
        "ix_transactions_portfolio_symbol_date", "transactions", ["portfolio_id", "symbol", "trade_date"]
    )
    op.create_index("ix_transactions_portfolio_order", "transactions", ["portfolio_id", "trade_date", "sequence"])
    op.create_index("ix_transactions_batch", "transactions", ["batch_id"])

    op.create_table(
        "holdings",
        sa.Column("id", uuid, primary_key=True),
        sa.Column("portfolio_id", uuid, sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("quantity", quantity, nullable=False),
        sa.Column("cost_basis", quantity, nullable=False),
        sa.Column("average_cost", quantity, nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("portfolio_id", "symbol", name="uq_holding_portfolio_symbol"),
    )
    op.create_index("ix_holdings_symbol", "holdings", ["symbol"])

    op.create_table(
        "tax_lots",
        sa.Column("id", uuid, primary_key=True),
        sa.Column("portfolio_id", uuid, sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column("transaction_id", uuid, sa.ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("acquired_on", sa.Date(), nullable=False),
        sa.Column("original_quantity", quantity, nullable=False),
        sa.Column("remaining_quantity", quantity, nullable=False),
        sa.Column("cost_basis", quantity, nullable=False),
        sa.Column("cost_per_share", quantity, nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("remaining_quantity >= 0", name="chk_tax_lot_remaining"),
        sa.CheckConstraint("cost_basis >= 0", name="chk_tax_lot_cost_basis"),
    )
    op.create_index("ix_tax_lots_portfolio_symbol", "tax_lots", ["portfolio_id", "symbol"])
    op.create_index("ix_tax_lots_acquired_on", "tax_lots", ["acquired_on"])

    op.create_table(
        "realized_gains",
        sa.Column("id", uuid, primary_key=True),
        sa.Column("portfolio_id", uuid, sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "sell_transaction_id", uuid, sa.ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("lot_id", uuid, nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("acquired_on", sa.Date(), nullable=False),
        sa.Column("disposed_on", sa.Date(), nullable=False),
        sa.Column("quantity", quantity, nullable=False),
        sa.Column("cost_basis", quantity, nullable=False),
        sa.Column("proceeds", quantity, nullable=False),
        sa.Column("gain", quantity, nullable=False),
        sa.Column("long_term", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_index("ix_realized_gains_portfolio_disposed", "realized_gains", ["portfolio_id", "disposed_on"])
    op.create_index("ix_realized_gains_sell", "realized_gains", ["sell_transaction_id"])

    op.create_table(
        "portfolio_actions",
        sa.Column("id", uuid, primary_key=True),
        sa.Column("portfolio_id", uuid, sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "corporate_action_id", uuid, sa.ForeignKey("corporate_actions.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("status", proposal_status, nullable=False, server_default="PENDING"),
        sa.Column("affected_symbol", sa.String(length=20), nullable=False),
        sa.Column("shares_affected", quantity, nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by_user_id", uuid, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_portfolio_actions_portfolio_status", "portfolio_actions", ["portfolio_id", "status"])
    op.create_index("ix_portfolio_actions_corporate_action", "portfolio_actions", ["corporate_action_id"])
    op.create_index(
        "uq_portfolio_actions_open",
        "portfolio_actions",
        ["portfolio_id", "corporate_action_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('PENDING', 'APPROVED')"),
    )

    op.create_table(
        "performance_snapshots",
        sa.Column("id", uuid, primary_key=True),
        sa.Column("portfolio_id", uuid, sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("total_value", quantity, nullable=False),
        sa.Column("total_cost_basis", quantity, nullable=False),
        sa.Column("total_return", quantity, nullable=False),
        sa.Column("total_return_pct", sa.Numeric(18, 6), nullable=True),
        sa.Column("day_change", quantity, nullable=True),
        sa.Column("day_change_pct", sa.Numeric(18, 6), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("portfolio_id", "date", name="uq_performance_snapshot_portfolio_date"),
    )
    op.create_index("ix_performance_snapshots_date", "performance_snapshots", ["date"])


def downgrade() -> None:
    for index, table in (
        ("ix_performance_snapshots_date", "performance_snapshots"),
        ("uq_portfolio_actions_open", "portfolio_actions"),
        ("ix_portfolio_actions_corporate_action", "portfolio_actions"),
        ("ix_portfolio_actions_portfolio_status", "portfolio_actions"),
        ("ix_realized_gains_sell", "realized_gains"),
        ("ix_realized_gains_portfolio_disposed", "realized_gains"),
        ("ix_tax_lots_acquired_on", "tax_lots"),
        ("ix_tax_lots_portfolio_symbol", "tax_lots"),
        ("ix_holdings_symbol", "holdings"),
        ("ix_transactions_batch", "transactions"),
        ("ix_transactions_portfolio_order", "transactions"),
        ("ix_transactions_portfolio_symbol_date", "transactions"),
        ("ix_corporate_actions_applied", "corporate_actions"),
        ("ix_corporate_actions_symbol_date", "corporate_actions"),
        ("ix_import_batches_portfolio", "import_batches"),
        ("ix_portfolios_user_id", "portfolios"),
        ("ix_password_reset_tokens_expires_at", "password_reset_tokens"),
        ("ix_refresh_tokens_expires_at", "refresh_tokens"),
        ("ix_users_email", "users"),
    ):
        op.drop_index(index, table_name=table)
    for table in (
        "performance_snapshots",
        "portfolio_actions",
        "realized_gains",
        "tax_lots",
        "holdings",
        "transactions",
        "corporate_actions",
        "import_batches",
        "portfolios",
        "password_reset_tokens",
        "refresh_tokens",
        "users",
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for enum in (proposal_status, corporate_action_type, action_leg, cost_basis_method, transaction_type):
        enum.drop(bind, checkfirst=True)


