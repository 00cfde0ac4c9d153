"""Location model."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vendrun.db.base import Base, TimestampMixin


def location_name_key(name: str) -> str:
    """Natural key for a location name: trimmed and case-folded."""
    return " ".join(name.split()).casefold()


class Location(Base, TimestampMixin):
    """A site visited on runs, hosting zero or more machines."""

    __tablename__ = "locations"
    __table_args__ = (
        UniqueConstraint("company_id", "name_key", name="uq_location_company_name"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    name_key: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Visit window, minutes after local midnight
    opening_time_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    closing_time_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    dwell_time_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relationships
    company: Mapped["Company"] = relationship("Company", back_populates="locations")
    machines: Mapped[list["Machine"]] = relationship("Machine", back_populates="location")


# Forward references
from vendrun.models.company import Company
from vendrun.models.machine import Machine
