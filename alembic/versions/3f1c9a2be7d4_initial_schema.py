"""initial schema

Revision ID: 3f1c9a2be7d4
Revises:
Create Date: 2026-10-19 09:12:41.506118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a2be7d4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- vendors ---
    op.create_table(
        "vendors",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("business_name", sa.String(), nullable=True),
        sa.Column("base_capacity", sa.Integer(), nullable=False, server_default="1000"),
        sa.Column("customers_add_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("restricted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("restriction_reason", sa.Text(), nullable=True),
        sa.Column("last_modified_by", sa.Text(), nullable=True),
        sa.Column("last_modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_modification_reason", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("base_capacity >= 0", name="ck_vendors_base_capacity_non_negative"),
    )

    # --- upgrade_entries ---
    op.create_table(
        "upgrade_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("vendor_id", sa.Uuid(), sa.ForeignKey("vendors.id"), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("amount_due", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("proof_of_payment", sa.Text(), nullable=True),
        sa.Column("payment_reference", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("requested_by", sa.Text(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("decided_by", sa.Text(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_upgrade_entries_vendor_status", "upgrade_entries", ["vendor_id", "status"])

    # --- customers ---
    op.create_table(
        "customers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("vendor_id", sa.Uuid(), sa.ForeignKey("vendors.id"), nullable=False),
        sa.Column("meter_number", sa.String(), nullable=False),
        sa.Column("disco", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("vendor_id", "meter_number", name="uq_customers_vendor_meter"),
    )
    op.create_index("ix_customers_vendor_id", "customers", ["vendor_id"])


def downgrade() -> None:
    op.drop_index("ix_customers_vendor_id", table_name="customers")
    op.drop_table("customers")
    op.drop_index("ix_upgrade_entries_vendor_status", table_name="upgrade_entries")
    op.drop_table("upgrade_entries")
    op.drop_table("vendors")
