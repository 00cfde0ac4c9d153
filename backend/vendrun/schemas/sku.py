"""SKU schemas."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class SKUResponse(BaseModel):
    id: int
    code: str
    name: str
    type: Optional[str] = None
    category: Optional[str] = None
    weight: Optional[Decimal] = None
    label_colour: Optional[str] = None
    is_fresh_or_frozen: bool
    count_needed_pointer: str
    expiry_days: Optional[int] = None

    model_config = {"from_attributes": True}


class CountPointerUpdate(BaseModel):
    """Pointer name is validated by the service so the error is uniform."""

    count_needed_pointer: str
