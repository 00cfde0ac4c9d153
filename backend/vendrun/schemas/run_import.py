"""Run import schemas."""

from __future__ import annotations

from typing import Any, Optional, List

from pydantic import BaseModel, Field


class ImportRow(BaseModel):
    """One row of an uploaded pick sheet, already shaped into fields."""

    machine_code: Optional[str] = None
    machine_description: Optional[str] = None
    machine_type: Optional[str] = None
    location_name: Optional[str] = None
    location_address: Optional[str] = None
    coil_code: Optional[str] = None
    sku_code: Optional[str] = None
    sku_name: Optional[str] = None
    sku_type: Optional[str] = None
    sku_category: Optional[str] = None

    current: Optional[int] = None
    par: Optional[int] = None
    need: Optional[int] = None
    forecast: Optional[int] = None
    total: Optional[int] = None
    short: Optional[int] = None
    spoil: Optional[int] = None
    inventory_count: Optional[int] = None
    notes: Optional[str] = None

    manual_override: Optional[int] = None


class CountSnapshot(BaseModel):
    """Imported quantities a count pointer can select from."""

    current: Optional[int] = None
    par: Optional[int] = None
    need: Optional[int] = None
    forecast: Optional[int] = None
    total: Optional[int] = None


class ResolvedEntity(BaseModel):
    """Canonical ids matched or created for one import row."""

    row_index: Optional[int] = None
    location_id: Optional[int] = None
    machine_id: int
    coil_id: int
    coil_item_id: int
    sku_id: int
    was_created: bool = False
    snapshot: CountSnapshot = Field(default_factory=CountSnapshot)
    manual_override: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None


class RowError(BaseModel):
    """A rejected import row."""

    row_index: int
    error: str
    detail: str
    missing: List[str] = Field(default_factory=list)
    value: Optional[Any] = None


class ReconcileRequest(BaseModel):
    """Import batch, optionally generating picks into a run."""

    rows: List[ImportRow]
    run_id: Optional[int] = None
    source: Optional[str] = None


class GenerateResult(BaseModel):
    created: List[int] = Field(default_factory=list)
    skipped_duplicates: List[int] = Field(default_factory=list)


class ReconcileResponse(BaseModel):
    run_import_id: int
    resolved: List[ResolvedEntity]
    failures: List[RowError]
    picks: Optional[GenerateResult] = None
