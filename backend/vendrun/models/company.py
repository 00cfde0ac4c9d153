"""Company model."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vendrun.db.base import Base, TimestampMixin


class Company(Base, TimestampMixin):
    """Tenant that owns locations, machines and runs."""

    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    time_zone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)  # IANA id

    # Relationships
    locations: Mapped[list["Location"]] = relationship("Location", back_populates="company")
    machines: Mapped[list["Machine"]] = relationship("Machine", back_populates="company")
    runs: Mapped[list["Run"]] = relationship("Run", back_populates="company")


# Forward references
from vendrun.models.location import Location
from vendrun.models.machine import Machine
from vendrun.models.run import Run
