"""Machine, machine type, coil and coil item models."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vendrun.db.base import Base, TimestampMixin


class MachineType(Base):
    """Model of vending machine, looked up by name on import."""

    __tablename__ = "machine_types"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    machines: Mapped[list["Machine"]] = relationship("Machine", back_populates="machine_type")


class Machine(Base, TimestampMixin):
    """A vending machine, identified by its company-scoped code."""

    __tablename__ = "machines"
    __table_args__ = (
        UniqueConstraint("company_id", "code", name="uq_machine_company_code"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    machine_type_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("machine_types.id", ondelete="SET NULL"), nullable=True
    )
    location_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("locations.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Relationships
    company: Mapped["Company"] = relationship("Company", back_populates="machines")
    machine_type: Mapped[Optional["MachineType"]] = relationship("MachineType", back_populates="machines")
    location: Mapped[Optional["Location"]] = relationship("Location", back_populates="machines")
    coils: Mapped[list["Coil"]] = relationship("Coil", back_populates="machine")


class Coil(Base):
    """A single dispensing lane within a machine."""

    __tablename__ = "coils"
    __table_args__ = (
        UniqueConstraint("machine_id", "code", name="uq_coil_machine_code"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    machine_id: Mapped[int] = mapped_column(
        ForeignKey("machines.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False)

    machine: Mapped["Machine"] = relationship("Machine", back_populates="coils")
    coil_items: Mapped[list["CoilItem"]] = relationship("CoilItem", back_populates="coil")


class CoilItem(Base):
    """Assignment of one SKU to one coil, with its target par level."""

    __tablename__ = "coil_items"
    __table_args__ = (
        UniqueConstraint("coil_id", "sku_id", name="uq_coil_item_coil_sku"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    coil_id: Mapped[int] = mapped_column(
        ForeignKey("coils.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sku_id: Mapped[int] = mapped_column(
        ForeignKey("skus.id", ondelete="CASCADE"), nullable=False, index=True
    )
    par: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    coil: Mapped["Coil"] = relationship("Coil", back_populates="coil_items")
    sku: Mapped["SKU"] = relationship("SKU", back_populates="coil_items")


# Forward references
from vendrun.models.company import Company
from vendrun.models.location import Location
from vendrun.models.sku import SKU
