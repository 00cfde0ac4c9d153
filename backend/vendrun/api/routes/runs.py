"""Run routes: creation, pick entries, lifecycle and packing boxes.

Every mutation goes through ``run_in_transaction`` so transient store
failures are retried before surfacing as 503.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query, Request, status

from vendrun.core.rate_limit import limiter
from vendrun.core.tenancy import CompanyId
from vendrun.db.session import DbSession
from vendrun.db.store import run_in_transaction
from vendrun.models.run import RunStatus
from vendrun.schemas.run import (
    ChocolateBoxCreate,
    ChocolateBoxResponse,
    ChocolateBoxUpdate,
    ExpiryOverridesRequest,
    GeneratePicksRequest,
    GeneratePicksResponse,
    OverrideRequest,
    PickEntryResponse,
    RunCreate,
    RunResponse,
    RunSnapshot,
    ScheduleRequest,
    SetPickStatusRequest,
    SubstituteRequest,
)
from vendrun.services.pick_generator import PickGenerator
from vendrun.services.run_lifecycle import RunLifecycleService

logger = logging.getLogger(__name__)

router = APIRouter()


# ==================== RUNS ====================

@router.post("", response_model=RunSnapshot, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_run(request: Request, payload: RunCreate, db: DbSession, company_id: CompanyId):
    """Create an empty DRAFT run."""
    service = RunLifecycleService(db, company_id)
    run = run_in_transaction(
        db,
        lambda: service.create_run(payload.picker_id, payload.runner_id, payload.scheduled_for),
    )
    return RunSnapshot.model_validate(run)


@router.get("", response_model=List[RunResponse])
@limiter.limit("60/minute")
def list_runs(
    request: Request,
    db: DbSession,
    company_id: CompanyId,
    run_status: Optional[RunStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
):
    return RunLifecycleService(db, company_id).list_runs(run_status, limit)


@router.get("/{run_id}", response_model=RunSnapshot)
@limiter.limit("60/minute")
def get_run(request: Request, run_id: int, db: DbSession, company_id: CompanyId):
    return RunSnapshot.model_validate(RunLifecycleService(db, company_id).get_run(run_id))


# ==================== PICK ENTRIES ====================

@router.post("/{run_id}/pick-entries/generate", response_model=GeneratePicksResponse)
@limiter.limit("30/minute")
def generate_pick_entries(
    request: Request,
    run_id: int,
    payload: GeneratePicksRequest,
    db: DbSession,
    company_id: CompanyId,
):
    """Create pick entries for resolved coil items; existing ones are refreshed."""
    generator = PickGenerator(db, company_id)

    def work():
        created, duplicates = generator.generate(run_id, payload.entities)
        return [p.id for p in created], [p.id for p in duplicates]

    created_ids, duplicate_ids = run_in_transaction(db, work)
    run = generator.lifecycle.get_run(run_id)
    return GeneratePicksResponse(
        created=created_ids,
        skipped_duplicates=duplicate_ids,
        run=RunSnapshot.model_validate(run),
    )


@router.post("/{run_id}/pick-entries/status", response_model=RunSnapshot)
@limiter.limit("120/minute")
def set_pick_status(
    request: Request,
    run_id: int,
    payload: SetPickStatusRequest,
    db: DbSession,
    company_id: CompanyId,
):
    """Mark entries picked or skipped; PENDING resets them."""
    service = RunLifecycleService(db, company_id)
    run = run_in_transaction(
        db, lambda: service.set_pick_status(run_id, payload.pick_ids, payload.status)
    )
    return RunSnapshot.model_validate(run)


@router.patch("/{run_id}/pick-entries/{pick_id}/override", response_model=PickEntryResponse)
@limiter.limit("120/minute")
def set_pick_override(
    request: Request,
    run_id: int,
    pick_id: int,
    payload: OverrideRequest,
    db: DbSession,
    company_id: CompanyId,
):
    """Set or clear (null) the manual count for one entry."""
    service = RunLifecycleService(db, company_id)
    pick = run_in_transaction(
        db,
        lambda: service.set_pick_override(
            run_id, pick_id, payload.override_count, payload.expected_version
        ),
    )
    return PickEntryResponse.model_validate(pick)


@router.put("/{run_id}/pick-entries/{pick_id}/expiry-overrides", response_model=PickEntryResponse)
@limiter.limit("120/minute")
def set_expiry_overrides(
    request: Request,
    run_id: int,
    pick_id: int,
    payload: ExpiryOverridesRequest,
    db: DbSession,
    company_id: CompanyId,
):
    """Replace the entry's per-expiry-date quantities."""
    service = RunLifecycleService(db, company_id)
    overrides = [(o.expiry_date, o.quantity) for o in payload.overrides]
    pick = run_in_transaction(
        db,
        lambda: service.set_expiry_overrides(run_id, pick_id, overrides, payload.expected_version),
    )
    return PickEntryResponse.model_validate(pick)


@router.post("/{run_id}/pick-entries/{pick_id}/substitute", response_model=PickEntryResponse)
@limiter.limit("60/minute")
def substitute_sku(
    request: Request,
    run_id: int,
    pick_id: int,
    payload: SubstituteRequest,
    db: DbSession,
    company_id: CompanyId,
):
    service = RunLifecycleService(db, company_id)
    pick = run_in_transaction(
        db,
        lambda: service.substitute_sku(run_id, pick_id, payload.sku_id, payload.expected_version),
    )
    return PickEntryResponse.model_validate(pick)


@router.delete("/{run_id}/pick-entries/{pick_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("60/minute")
def delete_pick_entry(
    request: Request,
    run_id: int,
    pick_id: int,
    db: DbSession,
    company_id: CompanyId,
    expected_version: Optional[int] = Query(None),
):
    """Remove an entry; the run may move on to READY if nothing else is pending."""
    service = RunLifecycleService(db, company_id)
    run_in_transaction(db, lambda: service.delete_pick(run_id, pick_id, expected_version))


# ==================== LIFECYCLE ====================

@router.post("/{run_id}/schedule", response_model=RunSnapshot)
@limiter.limit("30/minute")
def schedule_run(
    request: Request,
    run_id: int,
    payload: ScheduleRequest,
    db: DbSession,
    company_id: CompanyId,
):
    service = RunLifecycleService(db, company_id)
    run = run_in_transaction(db, lambda: service.schedule(run_id, payload.scheduled_for))
    return RunSnapshot.model_validate(run)


@router.post("/{run_id}/start", response_model=RunSnapshot)
@limiter.limit("30/minute")
def start_delivery(request: Request, run_id: int, db: DbSession, company_id: CompanyId):
    service = RunLifecycleService(db, company_id)
    run = run_in_transaction(db, lambda: service.start_delivery(run_id))
    return RunSnapshot.model_validate(run)


@router.post("/{run_id}/complete", response_model=RunSnapshot)
@limiter.limit("30/minute")
def complete_run(request: Request, run_id: int, db: DbSession, company_id: CompanyId):
    service = RunLifecycleService(db, company_id)
    run = run_in_transaction(db, lambda: service.complete(run_id))
    return RunSnapshot.model_validate(run)


@router.post("/{run_id}/cancel", response_model=RunSnapshot)
@limiter.limit("30/minute")
def cancel_run(request: Request, run_id: int, db: DbSession, company_id: CompanyId):
    service = RunLifecycleService(db, company_id)
    run = run_in_transaction(db, lambda: service.cancel(run_id))
    return RunSnapshot.model_validate(run)


@router.post("/{run_id}/historical", response_model=RunSnapshot)
@limiter.limit("30/minute")
def mark_run_historical(request: Request, run_id: int, db: DbSession, company_id: CompanyId):
    service = RunLifecycleService(db, company_id)
    run = run_in_transaction(db, lambda: service.mark_historical(run_id))
    return RunSnapshot.model_validate(run)


# ==================== CHOCOLATE BOXES ====================

@router.get("/{run_id}/chocolate-boxes", response_model=List[ChocolateBoxResponse])
@limiter.limit("60/minute")
def list_chocolate_boxes(request: Request, run_id: int, db: DbSession, company_id: CompanyId):
    return RunLifecycleService(db, company_id).list_chocolate_boxes(run_id)


@router.post(
    "/{run_id}/chocolate-boxes",
    response_model=ChocolateBoxResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("60/minute")
def add_chocolate_box(
    request: Request,
    run_id: int,
    payload: ChocolateBoxCreate,
    db: DbSession,
    company_id: CompanyId,
):
    service = RunLifecycleService(db, company_id)
    box = run_in_transaction(
        db, lambda: service.add_chocolate_box(run_id, payload.number, payload.machine_id)
    )
    return ChocolateBoxResponse.model_validate(box)


@router.delete("/{run_id}/chocolate-boxes/{box_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("60/minute")
def delete_chocolate_box(
    request: Request,
    run_id: int,
    box_id: int,
    db: DbSession,
    company_id: CompanyId,
):
    service = RunLifecycleService(db, company_id)
    run_in_transaction(db, lambda: service.delete_chocolate_box(run_id, box_id))


@router.patch("/{run_id}/chocolate-boxes/{box_id}", response_model=ChocolateBoxResponse)
@limiter.limit("60/minute")
def update_chocolate_box(
    request: Request,
    run_id: int,
    box_id: int,
    payload: ChocolateBoxUpdate,
    db: DbSession,
    company_id: CompanyId,
):
    service = RunLifecycleService(db, company_id)
    box = run_in_transaction(
        db,
        lambda: service.update_chocolate_box(run_id, box_id, payload.number, payload.machine_id),
    )
    return ChocolateBoxResponse.model_validate(box)
