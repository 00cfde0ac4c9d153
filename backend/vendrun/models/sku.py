"""SKU model."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vendrun.db.base import Base, TimestampMixin


class CountPointer(str, Enum):
    """Imported field that decides how many units a pick line needs."""

    CURRENT = "current"
    PAR = "par"
    NEED = "need"
    FORECAST = "forecast"
    TOTAL = "total"


class SKU(Base, TimestampMixin):
    """A stocked product, identified by its globally unique code."""

    __tablename__ = "skus"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    weight: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 3), nullable=True)
    label_colour: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_fresh_or_frozen: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    count_needed_pointer: Mapped[str] = mapped_column(
        String(20), default=CountPointer.TOTAL.value, nullable=False
    )
    expiry_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    coil_items: Mapped[list["CoilItem"]] = relationship("CoilItem", back_populates="sku")


# Forward references
from vendrun.models.machine import CoilItem
