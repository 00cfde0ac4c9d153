"""Run models: Run, PickEntry, PickEntryExpiryOverride and ChocolateBox."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, List

from sqlalchemy import (
    CheckConstraint, DateTime, ForeignKey, Integer, String, UniqueConstraint, func,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vendrun.db.base import Base, TimestampMixin, VersionMixin


class RunStatus(str, Enum):
    """Run lifecycle states."""

    DRAFT = "DRAFT"
    PICKING = "PICKING"
    READY = "READY"  # every pick entry resolved
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"  # out for delivery
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    HISTORICAL = "HISTORICAL"  # archived without being run


TERMINAL_RUN_STATUSES = frozenset(
    {RunStatus.COMPLETED, RunStatus.CANCELLED, RunStatus.HISTORICAL}
)


class PickStatus(str, Enum):
    """Pick entry states."""

    PENDING = "PENDING"
    PICKED = "PICKED"
    SKIPPED = "SKIPPED"


class Run(Base, TimestampMixin):
    """A restocking trip across one or more locations."""

    __tablename__ = "runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), default=RunStatus.DRAFT.value, nullable=False, index=True
    )
    picker_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    runner_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    picking_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    picking_ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivery_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    company: Mapped["Company"] = relationship("Company", back_populates="runs")
    pick_entries: Mapped[List["PickEntry"]] = relationship(
        "PickEntry", back_populates="run", cascade="all, delete-orphan", order_by="PickEntry.id"
    )
    chocolate_boxes: Mapped[List["ChocolateBox"]] = relationship(
        "ChocolateBox", back_populates="run", cascade="all, delete-orphan", order_by="ChocolateBox.number"
    )

    @property
    def is_locked(self) -> bool:
        return RunStatus(self.status) in TERMINAL_RUN_STATUSES


class PickEntry(Base, TimestampMixin, VersionMixin):
    """One pick line: how many units of a coil item's SKU to bring on a run."""

    __tablename__ = "pick_entries"
    __table_args__ = (
        UniqueConstraint("run_id", "coil_item_id", name="uq_pick_entry_run_coil_item"),
        CheckConstraint("resolved_count >= 0", name="ck_pick_entry_resolved_non_negative"),
        CheckConstraint(
            "override_count IS NULL OR override_count >= 0",
            name="ck_pick_entry_override_non_negative",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    run_id: Mapped[int] = mapped_column(
        ForeignKey("runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    coil_item_id: Mapped[int] = mapped_column(
        ForeignKey("coil_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    resolved_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # frozen at generation
    override_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=PickStatus.PENDING.value, nullable=False
    )
    picked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    # Import snapshot, kept for provenance
    current: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    par: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    need: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    forecast: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Relationships
    run: Mapped["Run"] = relationship("Run", back_populates="pick_entries")
    coil_item: Mapped["CoilItem"] = relationship("CoilItem")
    expiry_overrides: Mapped[List["PickEntryExpiryOverride"]] = relationship(
        "PickEntryExpiryOverride",
        back_populates="pick_entry",
        cascade="all, delete-orphan",
        order_by="PickEntryExpiryOverride.expiry_date",
    )

    @hybrid_property
    def count(self) -> int:
        if self.override_count is not None:
            return self.override_count
        return self.resolved_count

    @count.inplace.expression
    @classmethod
    def _count_expression(cls):
        return func.coalesce(cls.override_count, cls.resolved_count)

    @property
    def expiry_total(self) -> int:
        return sum(o.quantity for o in self.expiry_overrides)

    @property
    def sku_id(self) -> int:
        return self.coil_item.sku_id

    @property
    def sku_code(self) -> str:
        return self.coil_item.sku.code

    @property
    def coil_code(self) -> str:
        return self.coil_item.coil.code

    @property
    def machine_id(self) -> int:
        return self.coil_item.coil.machine_id

    @property
    def machine_code(self) -> str:
        return self.coil_item.coil.machine.code


class PickEntryExpiryOverride(Base):
    """Units of a pick entry that carry a specific expiry date."""

    __tablename__ = "pick_entry_expiry_overrides"
    __table_args__ = (
        UniqueConstraint("pick_entry_id", "expiry_date", name="uq_expiry_override_pick_date"),
        CheckConstraint("quantity > 0", name="ck_expiry_override_quantity_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    pick_entry_id: Mapped[int] = mapped_column(
        ForeignKey("pick_entries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expiry_date: Mapped[str] = mapped_column(String(10), nullable=False)  # YYYY-MM-DD
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    pick_entry: Mapped["PickEntry"] = relationship("PickEntry", back_populates="expiry_overrides")


class ChocolateBox(Base):
    """Numbered packing box for a machine on a run."""

    __tablename__ = "chocolate_boxes"
    __table_args__ = (
        UniqueConstraint("run_id", "number", name="uq_chocolate_box_run_number"),
        CheckConstraint("number >= 1", name="ck_chocolate_box_number_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    run_id: Mapped[int] = mapped_column(
        ForeignKey("runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    machine_id: Mapped[int] = mapped_column(
        ForeignKey("machines.id", ondelete="CASCADE"), nullable=False
    )

    run: Mapped["Run"] = relationship("Run", back_populates="chocolate_boxes")
    machine: Mapped["Machine"] = relationship("Machine")


# Forward references
from vendrun.models.company import Company
from vendrun.models.machine import CoilItem, Machine
