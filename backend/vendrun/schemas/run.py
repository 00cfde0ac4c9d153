"""Run and pick entry schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator

from vendrun.models.run import PickStatus, RunStatus
from vendrun.schemas.run_import import ResolvedEntity


class ExpiryOverrideItem(BaseModel):
    expiry_date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    quantity: int

    @field_validator("expiry_date")
    @classmethod
    def validate_expiry_date(cls, v: str) -> str:
        try:
            date.fromisoformat(v)
        except ValueError:
            raise ValueError(f"{v} is not a calendar date")
        return v

    model_config = {"from_attributes": True}


class PickEntryResponse(BaseModel):
    """Pick entry as shown to pickers."""

    id: int
    run_id: int
    coil_item_id: int
    status: PickStatus
    count: int
    resolved_count: int
    override_count: Optional[int] = None
    picked_at: Optional[datetime] = None
    current: Optional[int] = None
    par: Optional[int] = None
    need: Optional[int] = None
    forecast: Optional[int] = None
    total: Optional[int] = None
    notes: Optional[str] = None
    version: int
    expiry_overrides: List[ExpiryOverrideItem] = []

    # Flattened from the coil item
    sku_id: Optional[int] = None
    sku_code: Optional[str] = None
    coil_code: Optional[str] = None
    machine_id: Optional[int] = None
    machine_code: Optional[str] = None

    model_config = {"from_attributes": True}


class ChocolateBoxCreate(BaseModel):
    number: int = Field(..., ge=1)
    machine_id: int


class ChocolateBoxUpdate(BaseModel):
    number: Optional[int] = Field(None, ge=1)
    machine_id: Optional[int] = None


class ChocolateBoxResponse(BaseModel):
    id: int
    run_id: int
    number: int
    machine_id: int

    model_config = {"from_attributes": True}


class RunCreate(BaseModel):
    picker_id: Optional[str] = None
    runner_id: Optional[str] = None
    scheduled_for: Optional[datetime] = None


class RunResponse(BaseModel):
    """Run header without its pick entries."""

    id: int
    company_id: int
    status: RunStatus
    picker_id: Optional[str] = None
    runner_id: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    picking_started_at: Optional[datetime] = None
    picking_ended_at: Optional[datetime] = None
    delivery_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class RunSnapshot(RunResponse):
    """Run with its pick entries and packing boxes."""

    pick_entries: List[PickEntryResponse] = []
    chocolate_boxes: List[ChocolateBoxResponse] = []


class GeneratePicksRequest(BaseModel):
    entities: List[ResolvedEntity]


class GeneratePicksResponse(BaseModel):
    created: List[int]
    skipped_duplicates: List[int]
    run: RunSnapshot


class SetPickStatusRequest(BaseModel):
    pick_ids: List[int] = Field(..., min_length=1)
    status: PickStatus


class OverrideRequest(BaseModel):
    """``override_count`` null clears the override."""

    override_count: Optional[int] = None
    expected_version: Optional[int] = None


class ExpiryOverridesRequest(BaseModel):
    overrides: List[ExpiryOverrideItem]
    expected_version: Optional[int] = None


class SubstituteRequest(BaseModel):
    sku_id: int
    expected_version: Optional[int] = None


class ScheduleRequest(BaseModel):
    scheduled_for: datetime
