"""residuals core schema: csv_data, deals, payouts, action_history

Revision ID: 0001_residuals_core
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_residuals_core"
down_revision = None
branch_labels = None
depends_on = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    # deals
    op.create_table(
        "deals",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("deal_id", sa.String(length=64), nullable=False),
        sa.Column("mid", sa.String(length=64), nullable=False),
        sa.Column("participants_json", JSON, nullable=False),
        sa.Column("payout_type", sa.String(length=32), nullable=False, server_default=sa.text("'residual'")),
        sa.Column("assigned_agent_name", sa.String(length=255), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("available_to_purchase", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("deal_id", name="uq_deals_deal_id"),
    )
    op.create_index("ix_deals_mid", "deals", ["mid"])
    op.create_index("ix_deals_mid_created", "deals", ["mid", "created_at"])

    # csv_data (revenue events)
    op.create_table(
        "csv_data",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("batch_id", sa.Uuid(), nullable=True),
        sa.Column("row_hash", sa.String(length=64), nullable=True),
        sa.Column("mid", sa.String(length=64), nullable=False),
        sa.Column("merchant_name", sa.String(length=255), nullable=True),
        sa.Column("volume", sa.Numeric(18, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("fees", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("adjustments", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("chargebacks", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column("payout_month", sa.String(length=7), nullable=True),
        sa.Column("payout_type", sa.String(length=32), nullable=False, server_default=sa.text("'residual'")),
        sa.Column("assignment_status", sa.String(length=32), nullable=False, server_default=sa.text("'unassigned'")),
        sa.Column("deal_id", sa.Uuid(), sa.ForeignKey("deals.id", ondelete="SET NULL"), nullable=True),
        sa.Column("assigned_agent_id", sa.String(length=128), nullable=True),
        sa.Column("assigned_agent_name", sa.String(length=255), nullable=True),
        sa.Column("is_held", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("hold_reason", sa.Text(), nullable=True),
        sa.Column("raw_data", JSON, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("row_hash", name="uq_csv_data_row_hash"),
    )
    op.create_index("ix_csv_data_batch_id", "csv_data", ["batch_id"])
    op.create_index("ix_csv_data_mid", "csv_data", ["mid"])
    op.create_index("ix_csv_data_payout_month", "csv_data", ["payout_month"])
    op.create_index("ix_csv_data_assignment_status", "csv_data", ["assignment_status"])
    op.create_index("ix_csv_data_deal_id", "csv_data", ["deal_id"])
    op.create_index("ix_csv_data_mid_status", "csv_data", ["mid", "assignment_status"])

    # payouts
    op.create_table(
        "payouts",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("csv_data_id", sa.Uuid(), sa.ForeignKey("csv_data.id", ondelete="CASCADE"), nullable=True),
        sa.Column("deal_id", sa.String(length=64), nullable=True),
        sa.Column("mid", sa.String(length=64), nullable=False),
        sa.Column("merchant_name", sa.String(length=255), nullable=True),
        sa.Column("payout_month", sa.String(length=7), nullable=True),
        sa.Column("payout_date", sa.Date(), nullable=True),
        sa.Column("payout_type", sa.String(length=32), nullable=False, server_default=sa.text("'residual'")),
        sa.Column("volume", sa.Numeric(18, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("fees", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("adjustments", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("chargebacks", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("net_residual", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("partner_airtable_id", sa.String(length=128), nullable=True),
        sa.Column("partner_name", sa.String(length=255), nullable=True),
        sa.Column("partner_role", sa.String(length=64), nullable=True),
        sa.Column("partner_split_pct", sa.Numeric(9, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("partner_payout_amount", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("assignment_status", sa.String(length=32), nullable=False, server_default=sa.text("'confirmed'")),
        sa.Column("paid_status", sa.String(length=16), nullable=False, server_default=sa.text("'unpaid'")),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("paid_status IN ('paid', 'unpaid')", name="ck_payouts_paid_status"),
    )
    op.create_index("ix_payouts_csv_data_id", "payouts", ["csv_data_id"])
    op.create_index("ix_payouts_deal_id", "payouts", ["deal_id"])
    op.create_index("ix_payouts_mid", "payouts", ["mid"])
    op.create_index("ix_payouts_payout_month", "payouts", ["payout_month"])
    op.create_index("ix_payouts_partner_airtable_id", "payouts", ["partner_airtable_id"])
    op.create_index("ix_payouts_partner_month", "payouts", ["partner_airtable_id", "payout_month"])
    op.create_index("ix_payouts_mid_month", "payouts", ["mid", "payout_month"])

    # action_history (append-only apart from the undo flag)
    op.create_table(
        "action_history",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("action_type", sa.String(length=32), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Text(), nullable=False),
        sa.Column("entity_name", sa.String(length=255), nullable=True),
        sa.Column("previous_data", JSON, nullable=True),
        sa.Column("new_data", JSON, nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("batch_id", sa.String(length=64), nullable=True),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("is_undone", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("undone_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("undo_action_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_action_history_entity", "action_history", ["entity_type", "entity_id"])
    op.create_index("ix_action_history_created", "action_history", ["created_at"])
    op.create_index("ix_action_history_request_id", "action_history", ["request_id"])


def downgrade():
    op.drop_index("ix_action_history_request_id", table_name="action_history")
    op.drop_index("ix_action_history_created", table_name="action_history")
    op.drop_index("ix_action_history_entity", table_name="action_history")
    op.drop_table("action_history")

    for name in (
        "ix_payouts_mid_month",
        "ix_payouts_partner_month",
        "ix_payouts_partner_airtable_id",
        "ix_payouts_payout_month",
        "ix_payouts_mid",
        "ix_payouts_deal_id",
        "ix_payouts_csv_data_id",
    ):
        op.drop_index(name, table_name="payouts")
    op.drop_table("payouts")

    for name in (
        "ix_csv_data_mid_status",
        "ix_csv_data_deal_id",
        "ix_csv_data_assignment_status",
        "ix_csv_data_payout_month",
        "ix_csv_data_mid",
        "ix_csv_data_batch_id",
    ):
        op.drop_index(name, table_name="csv_data")
    op.drop_table("csv_data")

    op.drop_index("ix_deals_mid_created", table_name="deals")
    op.drop_index("ix_deals_mid", table_name="deals")
    op.drop_table("deals")
