"""Initial schema

Revision ID: 001
Revises:
Create Date: 2024-06-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Companies table
    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("time_zone", sa.String(64), nullable=True),
        *timestamps(),
    )

    # Locations table
    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("name_key", sa.String(200), nullable=False),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("opening_time_minutes", sa.Integer(), nullable=True),
        sa.Column("closing_time_minutes", sa.Integer(), nullable=True),
        sa.Column("dwell_time_minutes", sa.Integer(), nullable=True),
        *timestamps(),
        sa.UniqueConstraint("company_id", "name_key", name="uq_location_company_name"),
    )

    # Machine types table
    op.create_table(
        "machine_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("description", sa.String(500), nullable=True),
    )

    # Machines table
    op.create_table(
        "machines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("code", sa.String(100), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("machine_type_id", sa.Integer(), sa.ForeignKey("machine_types.id", ondelete="SET NULL"), nullable=True),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="SET NULL"), nullable=True, index=True),
        *timestamps(),
        sa.UniqueConstraint("company_id", "code", name="uq_machine_company_code"),
    )

    # SKUs table
    op.create_table(
        "skus",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=False, server_default=""),
        sa.Column("type", sa.String(100), nullable=True),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("weight", sa.Numeric(10, 3), nullable=True),
        sa.Column("label_colour", sa.String(20), nullable=True),
        sa.Column("is_fresh_or_frozen", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("count_needed_pointer", sa.String(20), nullable=False, server_default="total"),
        sa.Column("expiry_days", sa.Integer(), nullable=True),
        *timestamps(),
    )

    # Coils and coil items
    op.create_table(
        "coils",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("machine_id", sa.Integer(), sa.ForeignKey("machines.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("code", sa.String(50), nullable=False),
        sa.UniqueConstraint("machine_id", "code", name="uq_coil_machine_code"),
    )
    op.create_table(
        "coil_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("coil_id", sa.Integer(), sa.ForeignKey("coils.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("sku_id", sa.Integer(), sa.ForeignKey("skus.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("par", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("coil_id", "sku_id", name="uq_coil_item_coil_sku"),
    )

    # Runs table
    op.create_table(
        "runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT", index=True),
        sa.Column("picker_id", sa.String(100), nullable=True),
        sa.Column("runner_id", sa.String(100), nullable=True),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("picking_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("picking_ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *timestamps(),
    )

    # Pick entries table
    op.create_table(
        "pick_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("run_id", sa.Integer(), sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("coil_item_id", sa.Integer(), sa.ForeignKey("coil_items.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("resolved_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("override_count", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("picked_at", sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column("current", sa.Integer(), nullable=True),
        sa.Column("par", sa.Integer(), nullable=True),
        sa.Column("need", sa.Integer(), nullable=True),
        sa.Column("forecast", sa.Integer(), nullable=True),
        sa.Column("total", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(1000), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *timestamps(),
        sa.UniqueConstraint("run_id", "coil_item_id", name="uq_pick_entry_run_coil_item"),
        sa.CheckConstraint("resolved_count >= 0", name="ck_pick_entry_resolved_non_negative"),
        sa.CheckConstraint(
            "override_count IS NULL OR override_count >= 0",
            name="ck_pick_entry_override_non_negative",
        ),
    )
    op.create_table(
        "pick_entry_expiry_overrides",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("pick_entry_id", sa.Integer(), sa.ForeignKey("pick_entries.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("expiry_date", sa.String(10), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.UniqueConstraint("pick_entry_id", "expiry_date", name="uq_expiry_override_pick_date"),
        sa.CheckConstraint("quantity > 0", name="ck_expiry_override_quantity_positive"),
    )

    # Chocolate boxes table
    op.create_table(
        "chocolate_boxes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("run_id", sa.Integer(), sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("machine_id", sa.Integer(), sa.ForeignKey("machines.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("run_id", "number", name="uq_chocolate_box_run_number"),
        sa.CheckConstraint("number >= 1", name="ck_chocolate_box_number_positive"),
    )

    # Import snapshots (append-only)
    op.create_table(
        "run_imports",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("run_id", sa.Integer(), sa.ForeignKey("runs.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("source", sa.String(200), nullable=True),
        sa.Column("row_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "run_import_machines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("run_import_id", sa.Integer(), sa.ForeignKey("run_imports.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("machine_code", sa.String(100), nullable=False),
        sa.Column("machine_description", sa.String(500), nullable=True),
        sa.Column("machine_type", sa.String(200), nullable=True),
        sa.Column("location_name", sa.String(200), nullable=True),
        sa.Column("location_address", sa.String(500), nullable=True),
    )
    op.create_table(
        "run_import_coil_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("run_import_id", sa.Integer(), sa.ForeignKey("run_imports.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("import_machine_id", sa.Integer(), sa.ForeignKey("run_import_machines.id", ondelete="CASCADE"), nullable=True),
        sa.Column("row_index", sa.Integer(), nullable=False),
        sa.Column("machine_code", sa.String(100), nullable=True),
        sa.Column("coil_code", sa.String(50), nullable=True),
        sa.Column("sku_code", sa.String(100), nullable=True),
        sa.Column("sku_name", sa.String(200), nullable=True),
        sa.Column("current", sa.Integer(), nullable=True),
        sa.Column("par", sa.Integer(), nullable=True),
        sa.Column("need", sa.Integer(), nullable=True),
        sa.Column("forecast", sa.Integer(), nullable=True),
        sa.Column("total", sa.Integer(), nullable=True),
        sa.Column("short", sa.Integer(), nullable=True),
        sa.Column("spoil", sa.Integer(), nullable=True),
        sa.Column("inventory_count", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(1000), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("run_import_coil_items")
    op.drop_table("run_import_machines")
    op.drop_table("run_imports")
    op.drop_table("chocolate_boxes")
    op.drop_table("pick_entry_expiry_overrides")
    op.drop_table("pick_entries")
    op.drop_table("runs")
    op.drop_table("coil_items")
    op.drop_table("coils")
    op.drop_table("skus")
    op.drop_table("machines")
    op.drop_table("machine_types")
    op.drop_table("locations")
    op.drop_table("companies")
