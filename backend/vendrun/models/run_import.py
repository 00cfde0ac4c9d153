"""Run import snapshot models.

A RunImport records an uploaded batch exactly as it was reported. Rows are
written once and never updated, so a pick entry's numbers can always be
traced back to the batch that produced them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, List

from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vendrun.db.base import Base


class RunImport(Base):
    """One uploaded batch of import rows."""

    __tablename__ = "run_imports"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    run_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("runs.id", ondelete="SET NULL"), nullable=True, index=True
    )
    source: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)  # uploaded file name
    row_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    machines: Mapped[List["RunImportMachine"]] = relationship(
        "RunImportMachine", back_populates="run_import", cascade="all, delete-orphan"
    )
    coil_items: Mapped[List["RunImportCoilItem"]] = relationship(
        "RunImportCoilItem", back_populates="run_import", cascade="all, delete-orphan",
        order_by="RunImportCoilItem.row_index",
    )


class RunImportMachine(Base):
    """Machine header as reported in a batch."""

    __tablename__ = "run_import_machines"

    id: Mapped[int] = mapped_column(primary_key=True)
    run_import_id: Mapped[int] = mapped_column(
        ForeignKey("run_imports.id", ondelete="CASCADE"), nullable=False, index=True
    )
    machine_code: Mapped[str] = mapped_column(String(100), nullable=False)
    machine_description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    machine_type: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    location_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    location_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    run_import: Mapped["RunImport"] = relationship("RunImport", back_populates="machines")
    coil_items: Mapped[List["RunImportCoilItem"]] = relationship(
        "RunImportCoilItem", back_populates="import_machine"
    )


class RunImportCoilItem(Base):
    """A single reported row. Malformed rows are kept with no machine link."""

    __tablename__ = "run_import_coil_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    run_import_id: Mapped[int] = mapped_column(
        ForeignKey("run_imports.id", ondelete="CASCADE"), nullable=False, index=True
    )
    import_machine_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("run_import_machines.id", ondelete="CASCADE"), nullable=True
    )
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)
    machine_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    coil_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    sku_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sku_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    current: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    par: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    need: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    forecast: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    short: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    spoil: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    inventory_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    run_import: Mapped["RunImport"] = relationship("RunImport", back_populates="coil_items")
    import_machine: Mapped[Optional["RunImportMachine"]] = relationship(
        "RunImportMachine", back_populates="coil_items"
    )
