"""rights_core_tables

Revision ID: 7c1e0a9b2d41
Revises:
Create Date: 2026-10-18 09:30:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "7c1e0a9b2d41"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "vouchers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("voucher_code", sa.String(160), nullable=False),
        sa.Column("purpose", sa.String(32), nullable=False),
        sa.Column("created_by_account_id", sa.String(64), nullable=True),
        sa.Column("recipient_email", sa.String(320), nullable=True),
        sa.Column("reward_passes", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("signup_bonus", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_by_account_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("reward_passes >= 0", name="ck_vouchers_reward_passes_non_negative"),
        sa.CheckConstraint("signup_bonus >= 0", name="ck_vouchers_signup_bonus_non_negative"),
        sa.CheckConstraint(
            "(redeemed_at IS NULL) = (redeemed_by_account_id IS NULL)",
            name="ck_vouchers_redeemed_marker_consistency",
        ),
        sa.UniqueConstraint("voucher_code", name="uq_vouchers_voucher_code"),
    )
    op.create_index(
        "idx_vouchers_recipient_email_lower",
        "vouchers",
        [sa.text("lower(recipient_email)")],
    )
    op.create_index("idx_vouchers_created_by", "vouchers", ["created_by_account_id"])
    op.create_index("idx_vouchers_purpose", "vouchers", ["purpose"])

    op.create_table(
        "entitlements",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("account_id", sa.String(64), nullable=True),
        sa.Column("rights_type", sa.String(8), nullable=False),
        sa.Column("rights_value", sa.String(64), nullable=False),
        sa.Column("uses_remaining", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_account_id", sa.String(64), nullable=True),
        sa.Column("recipient_email", sa.String(320), nullable=True),
        sa.Column("source_voucher_code", sa.String(160), nullable=True),
        sa.Column("purchase_reference", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("rights_type IN ('pass','era')", name="ck_entitlements_type"),
        sa.CheckConstraint("uses_remaining >= -1", name="ck_entitlements_uses_remaining_floor"),
        sa.CheckConstraint(
            "NOT (rights_type = 'pass' AND purchase_reference IS NOT NULL)",
            name="ck_entitlements_pass_without_purchase",
        ),
        sa.UniqueConstraint("source_voucher_code", name="uq_entitlements_source_voucher_code"),
        sa.UniqueConstraint("purchase_reference", name="uq_entitlements_purchase_reference"),
    )
    op.create_index(
        "idx_entitlements_account_type_value",
        "entitlements",
        ["account_id", "rights_type", "rights_value"],
    )
    op.create_index("idx_entitlements_account_created", "entitlements", ["account_id", "created_at"])
    op.create_index("idx_entitlements_expires", "entitlements", ["expires_at"])

    op.create_table(
        "entitlement_ledger",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("account_id", sa.String(64), nullable=False),
        sa.Column("entitlement_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("entry_type", sa.String(32), nullable=False),
        sa.Column("asset", sa.String(8), nullable=False),
        sa.Column("direction", sa.String(8), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(32), nullable=False),
        sa.Column("idempotency_key", sa.String(160), nullable=False),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_entitlement_ledger_amount_positive"),
        sa.CheckConstraint("direction IN ('CREDIT','DEBIT')", name="ck_entitlement_ledger_direction"),
        sa.CheckConstraint("asset IN ('pass','era')", name="ck_entitlement_ledger_asset"),
        sa.ForeignKeyConstraint(["entitlement_id"], ["entitlements.id"]),
        sa.UniqueConstraint("idempotency_key", name="uq_entitlement_ledger_idempotency_key"),
    )
    op.create_index(
        "idx_entitlement_ledger_account_created",
        "entitlement_ledger",
        ["account_id", "created_at"],
    )
    op.create_index("idx_entitlement_ledger_entitlement", "entitlement_ledger", ["entitlement_id"])
    op.create_index("idx_entitlement_ledger_type", "entitlement_ledger", ["entry_type"])


def downgrade() -> None:
    op.drop_index("idx_entitlement_ledger_type", table_name="entitlement_ledger")
    op.drop_index("idx_entitlement_ledger_entitlement", table_name="entitlement_ledger")
    op.drop_index("idx_entitlement_ledger_account_created", table_name="entitlement_ledger")
    op.drop_table("entitlement_ledger")

    op.drop_index("idx_entitlements_expires", table_name="entitlements")
    op.drop_index("idx_entitlements_account_created", table_name="entitlements")
    op.drop_index("idx_entitlements_account_type_value", table_name="entitlements")
    op.drop_table("entitlements")

    op.drop_index("idx_vouchers_purpose", table_name="vouchers")
    op.drop_index("idx_vouchers_created_by", table_name="vouchers")
    op.drop_index("idx_vouchers_recipient_email_lower", table_name="vouchers")
    op.drop_table("vouchers")
