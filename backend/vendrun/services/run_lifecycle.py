"""Run Lifecycle Controller.

Run flow:
    DRAFT -> PICKING -> READY -> SCHEDULED -> IN_PROGRESS -> COMPLETED
with CANCELLED and HISTORICAL reachable from every non-terminal state.

Pick entry flow:
    PENDING -> PICKED | SKIPPED, and back to PENDING only through a reset.

The legal moves live in two transition tables consulted by the pure
``transition`` / ``transition_pick`` functions, so they can be checked without
a database. ``RunLifecycleService`` applies them to persisted rows and always
recomputes a run's status from a fresh count of its entries.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vendrun.core.errors import (
    DuplicateChocolateBox,
    DuplicatePickEntry,
    EntityNotFound,
    InvalidOverride,
    InvalidTransition,
    RunLocked,
)
from vendrun.db.store import find_or_create
from vendrun.models.machine import CoilItem, Machine
from vendrun.models.run import (
    ChocolateBox,
    PickEntry,
    PickEntryExpiryOverride,
    PickStatus,
    Run,
    RunStatus,
    TERMINAL_RUN_STATUSES,
)
from vendrun.models.sku import SKU

logger = logging.getLogger(__name__)


class RunEvent:
    PICKS_GENERATED = "picks_generated"
    ALL_PICKED = "all_picked"
    PICK_REOPENED = "pick_reopened"
    SCHEDULED = "scheduled"
    DELIVERY_STARTED = "delivery_started"
    DELIVERY_COMPLETED = "delivery_completed"
    CANCEL = "cancel"
    MARK_HISTORICAL = "mark_historical"


class PickEvent:
    PICK = "pick"
    SKIP = "skip"
    RESET = "reset"


RUN_TRANSITIONS: Dict[Tuple[RunStatus, str], RunStatus] = {
    (RunStatus.DRAFT, RunEvent.PICKS_GENERATED): RunStatus.PICKING,
    (RunStatus.PICKING, RunEvent.PICKS_GENERATED): RunStatus.PICKING,
    (RunStatus.PICKING, RunEvent.PICK_REOPENED): RunStatus.PICKING,
    (RunStatus.PICKING, RunEvent.ALL_PICKED): RunStatus.READY,
    (RunStatus.READY, RunEvent.PICK_REOPENED): RunStatus.PICKING,
    (RunStatus.READY, RunEvent.SCHEDULED): RunStatus.SCHEDULED,
    (RunStatus.SCHEDULED, RunEvent.SCHEDULED): RunStatus.SCHEDULED,
    (RunStatus.SCHEDULED, RunEvent.PICK_REOPENED): RunStatus.PICKING,
    (RunStatus.SCHEDULED, RunEvent.DELIVERY_STARTED): RunStatus.IN_PROGRESS,
    (RunStatus.IN_PROGRESS, RunEvent.DELIVERY_COMPLETED): RunStatus.COMPLETED,
}

# Cancellation and archiving apply to every live state
for _state in RunStatus:
    if _state not in TERMINAL_RUN_STATUSES:
        RUN_TRANSITIONS[(_state, RunEvent.CANCEL)] = RunStatus.CANCELLED
        RUN_TRANSITIONS[(_state, RunEvent.MARK_HISTORICAL)] = RunStatus.HISTORICAL

PICK_TRANSITIONS: Dict[Tuple[PickStatus, str], PickStatus] = {
    (PickStatus.PENDING, PickEvent.PICK): PickStatus.PICKED,
    (PickStatus.PENDING, PickEvent.SKIP): PickStatus.SKIPPED,
    (PickStatus.PICKED, PickEvent.RESET): PickStatus.PENDING,
    (PickStatus.SKIPPED, PickEvent.RESET): PickStatus.PENDING,
}

PICK_EVENT_FOR_TARGET = {
    PickStatus.PICKED: PickEvent.PICK,
    PickStatus.SKIPPED: PickEvent.SKIP,
    PickStatus.PENDING: PickEvent.RESET,
}


def transition(state, event: str) -> RunStatus:
    """Next run state for *event*, or InvalidTransition."""
    state = RunStatus(state)
    try:
        return RUN_TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition("run", state.value, event) from None


def transition_pick(state, event: str) -> PickStatus:
    """Next pick entry state for *event*, or InvalidTransition."""
    state = PickStatus(state)
    try:
        return PICK_TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition("pick entry", state.value, event) from None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RunLifecycleService:
    """Applies run and pick entry transitions to persisted rows."""

    def __init__(self, db: Session, company_id: int):
        self.db = db
        self.company_id = company_id

    # ===== LOOKUPS =====

    def get_run(self, run_id: int, for_update: bool = False) -> Run:
        query = self.db.query(Run).filter(Run.id == run_id, Run.company_id == self.company_id)
        if for_update:
            query = query.with_for_update()
        run = query.first()
        if not run:
            raise EntityNotFound("Run", run_id)
        return run

    def list_runs(self, status: Optional[RunStatus] = None, limit: int = 100) -> List[Run]:
        query = self.db.query(Run).filter(Run.company_id == self.company_id)
        if status is not None:
            query = query.filter(Run.status == RunStatus(status).value)
        return query.order_by(Run.created_at.desc(), Run.id.desc()).limit(limit).all()

    def get_pick(self, run: Run, pick_id: int, expected_version: Optional[int] = None) -> PickEntry:
        pick = (
            self.db.query(PickEntry)
            .filter(PickEntry.id == pick_id, PickEntry.run_id == run.id)
            .with_for_update()
            .first()
        )
        if not pick:
            raise EntityNotFound("PickEntry", pick_id)
        pick.check_version(expected_version)
        return pick

    def ensure_unlocked(self, run: Run) -> None:
        if run.is_locked:
            raise RunLocked(run.id, run.status)

    # ===== RUN STATUS =====

    def create_run(
        self,
        picker_id: Optional[str] = None,
        runner_id: Optional[str] = None,
        scheduled_for: Optional[datetime] = None,
    ) -> Run:
        run = Run(
            company_id=self.company_id,
            status=RunStatus.DRAFT.value,
            picker_id=picker_id,
            runner_id=runner_id,
            scheduled_for=as_utc(scheduled_for) if scheduled_for else None,
        )
        self.db.add(run)
        self.db.flush()
        logger.info(f"Created run {run.id} for company {self.company_id}")
        return run

    def _apply(self, run: Run, event: str) -> RunStatus:
        previous = run.status
        run.status = transition(run.status, event).value
        if run.status != previous:
            logger.info(f"Run {run.id}: {previous} -> {run.status} ({event})")
        return RunStatus(run.status)

    def recompute_status(self, run: Run) -> RunStatus:
        """Derive the run's picking state from a fresh read of its entries."""
        self.db.flush()
        total, pending = (
            self.db.query(
                func.count(PickEntry.id),
                func.count(case((PickEntry.status == PickStatus.PENDING.value, 1))),
            )
            .filter(PickEntry.run_id == run.id)
            .one()
        )
        status = RunStatus(run.status)
        now = utcnow()

        if status == RunStatus.DRAFT and total > 0:
            status = self._apply(run, RunEvent.PICKS_GENERATED)
            if run.picking_started_at is None:
                run.picking_started_at = now

        if status == RunStatus.PICKING and total > 0 and pending == 0:
            status = self._apply(run, RunEvent.ALL_PICKED)
            run.picking_ended_at = now
        elif status in (RunStatus.READY, RunStatus.SCHEDULED) and pending > 0:
            status = self._apply(run, RunEvent.PICK_REOPENED)
            run.picking_ended_at = None

        if status == RunStatus.READY and run.scheduled_for and as_utc(run.scheduled_for) > now:
            status = self._apply(run, RunEvent.SCHEDULED)

        return status

    def schedule(self, run_id: int, scheduled_for: datetime) -> Run:
        """Store the delivery time; a ready run moves on when it is in the future."""
        run = self.get_run(run_id, for_update=True)
        self.ensure_unlocked(run)
        run.scheduled_for = as_utc(scheduled_for)
        if RunStatus(run.status) == RunStatus.READY and as_utc(scheduled_for) > utcnow():
            self._apply(run, RunEvent.SCHEDULED)
        self.db.flush()
        return run

    def start_delivery(self, run_id: int) -> Run:
        run = self.get_run(run_id, for_update=True)
        self.ensure_unlocked(run)
        self._apply(run, RunEvent.DELIVERY_STARTED)
        run.delivery_started_at = utcnow()
        self.db.flush()
        return run

    def complete(self, run_id: int) -> Run:
        run = self.get_run(run_id, for_update=True)
        self.ensure_unlocked(run)
        self._apply(run, RunEvent.DELIVERY_COMPLETED)
        run.completed_at = utcnow()
        self.db.flush()
        return run

    def cancel(self, run_id: int) -> Run:
        run = self.get_run(run_id, for_update=True)
        self.ensure_unlocked(run)
        self._apply(run, RunEvent.CANCEL)
        self.db.flush()
        return run

    def mark_historical(self, run_id: int) -> Run:
        run = self.get_run(run_id, for_update=True)
        self.ensure_unlocked(run)
        self._apply(run, RunEvent.MARK_HISTORICAL)
        self.db.flush()
        return run

    # ===== PICK ENTRIES =====

    def set_pick_status(self, run_id: int, pick_ids: Iterable[int], status: PickStatus) -> Run:
        """Move entries to *status*; PENDING resets them and clears picked_at."""
        run = self.get_run(run_id, for_update=True)
        self.ensure_unlocked(run)
        target = PickStatus(status)
        event = PICK_EVENT_FOR_TARGET[target]

        picks = [self.get_pick(run, pick_id) for pick_id in dict.fromkeys(pick_ids)]
        now = utcnow()
        for pick in picks:
            if PickStatus(pick.status) == target:
                continue
            pick.status = transition_pick(pick.status, event).value
            pick.picked_at = now if target == PickStatus.PICKED else None
            pick.increment_version()

        self.recompute_status(run)
        self.db.flush()
        return run

    def set_pick_override(
        self,
        run_id: int,
        pick_id: int,
        override_count: Optional[int],
        expected_version: Optional[int] = None,
    ) -> PickEntry:
        """Set or clear the manual count. Clearing restores the frozen count."""
        run = self.get_run(run_id)
        self.ensure_unlocked(run)
        pick = self.get_pick(run, pick_id, expected_version)

        if override_count is not None and override_count < 0:
            raise InvalidOverride("override_count must be zero or greater", override_count)
        new_count = override_count if override_count is not None else pick.resolved_count
        if new_count < pick.expiry_total:
            raise InvalidOverride(
                f"count {new_count} is below the {pick.expiry_total} units already assigned to expiry dates",
                override_count,
            )

        pick.override_count = override_count
        pick.increment_version()
        self.db.flush()
        return pick

    def set_expiry_overrides(
        self,
        run_id: int,
        pick_id: int,
        overrides: List[Tuple[str, int]],
        expected_version: Optional[int] = None,
    ) -> PickEntry:
        """Replace the entry's expiry rows with *overrides*."""
        run = self.get_run(run_id)
        self.ensure_unlocked(run)
        pick = self.get_pick(run, pick_id, expected_version)

        bad = [{"expiry_date": d, "quantity": q} for d, q in overrides if q <= 0]
        if bad:
            raise InvalidOverride("expiry quantities must be greater than zero", bad)
        dates = [d for d, _ in overrides]
        if len(set(dates)) != len(dates):
            raise InvalidOverride("expiry dates must be unique", dates)
        requested = sum(q for _, q in overrides)
        if requested > pick.count:
            raise InvalidOverride(
                f"expiry quantities total {requested}, more than the {pick.count} units on the pick entry",
                [{"expiry_date": d, "quantity": q} for d, q in overrides],
            )

        pick.expiry_overrides.clear()
        self.db.flush()
        for expiry_date, quantity in overrides:
            pick.expiry_overrides.append(
                PickEntryExpiryOverride(expiry_date=expiry_date, quantity=quantity)
            )
        pick.increment_version()
        self.db.flush()
        return pick

    def substitute_sku(
        self,
        run_id: int,
        pick_id: int,
        new_sku_id: int,
        expected_version: Optional[int] = None,
    ) -> PickEntry:
        """Point the entry at the same coil holding another SKU.

        Counts, overrides and status carry over. The coil item is created
        with the old par when the coil has never held that SKU.
        """
        run = self.get_run(run_id)
        self.ensure_unlocked(run)
        pick = self.get_pick(run, pick_id, expected_version)

        sku = self.db.query(SKU).filter(SKU.id == new_sku_id).first()
        if not sku:
            raise EntityNotFound("SKU", new_sku_id)

        current_item = pick.coil_item
        if current_item.sku_id == sku.id:
            return pick

        coil_item, _ = find_or_create(
            self.db,
            lambda: self.db.query(CoilItem).filter(
                CoilItem.coil_id == current_item.coil_id, CoilItem.sku_id == sku.id
            ).first(),
            lambda: CoilItem(coil_id=current_item.coil_id, sku_id=sku.id, par=current_item.par),
        )

        clash = (
            self.db.query(PickEntry.id)
            .filter(
                PickEntry.run_id == run.id,
                PickEntry.coil_item_id == coil_item.id,
                PickEntry.id != pick.id,
            )
            .first()
        )
        if clash:
            raise DuplicatePickEntry(run.id, coil_item.id)

        pick.coil_item = coil_item
        pick.increment_version()
        self.db.flush()
        logger.info(f"Pick entry {pick.id} on run {run.id}: SKU {current_item.sku_id} -> {sku.id}")
        return pick

    def delete_pick(self, run_id: int, pick_id: int, expected_version: Optional[int] = None) -> Run:
        """Remove an entry from the run; the status follows what is left."""
        run = self.get_run(run_id, for_update=True)
        self.ensure_unlocked(run)
        pick = self.get_pick(run, pick_id, expected_version)

        run.pick_entries.remove(pick)
        self.recompute_status(run)
        self.db.flush()
        logger.info(f"Removed pick entry {pick_id} from run {run.id}")
        return run

    # ===== CHOCOLATE BOXES =====

    def list_chocolate_boxes(self, run_id: int) -> List[ChocolateBox]:
        return self.get_run(run_id).chocolate_boxes

    def add_chocolate_box(self, run_id: int, number: int, machine_id: int) -> ChocolateBox:
        run = self.get_run(run_id)
        self.ensure_unlocked(run)
        machine = self._get_machine(machine_id)

        box = ChocolateBox(run_id=run.id, number=number, machine_id=machine.id)
        self._write_box(run, number, lambda: self.db.add(box))
        return box

    def update_chocolate_box(
        self,
        run_id: int,
        box_id: int,
        number: Optional[int] = None,
        machine_id: Optional[int] = None,
    ) -> ChocolateBox:
        """Renumber a box or move it to another machine."""
        run = self.get_run(run_id)
        self.ensure_unlocked(run)
        box = self._get_box(run, box_id)
        machine = self._get_machine(machine_id) if machine_id is not None else None

        def apply():
            if machine is not None:
                box.machine_id = machine.id
            if number is not None:
                box.number = number

        self._write_box(run, number if number is not None else box.number, apply)
        return box

    def delete_chocolate_box(self, run_id: int, box_id: int) -> None:
        run = self.get_run(run_id)
        self.ensure_unlocked(run)
        self.db.delete(self._get_box(run, box_id))
        self.db.flush()

    def _get_machine(self, machine_id: int) -> Machine:
        machine = self.db.query(Machine).filter(
            Machine.id == machine_id, Machine.company_id == self.company_id
        ).first()
        if not machine:
            raise EntityNotFound("Machine", machine_id)
        return machine

    def _get_box(self, run: Run, box_id: int) -> ChocolateBox:
        box = self.db.query(ChocolateBox).filter(
            ChocolateBox.id == box_id, ChocolateBox.run_id == run.id
        ).first()
        if not box:
            raise EntityNotFound("ChocolateBox", box_id)
        return box

    def _write_box(self, run: Run, number: int, apply: Callable[[], None]) -> None:
        """Apply a box change in a savepoint; a taken number is a conflict."""
        savepoint = self.db.begin_nested()
        try:
            apply()
            self.db.flush()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateChocolateBox(run.id, number) from None
        savepoint.commit()
