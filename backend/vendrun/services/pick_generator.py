"""Pick Generator: turn resolved entities into pick entries for a run.

A run holds at most one pick entry per coil item. Generating again for a
coil item that already has an entry refreshes its import snapshot in place
and leaves the count frozen at first generation untouched.
"""

import logging
from typing import List, Sequence, Tuple

from sqlalchemy.orm import Session, joinedload

from vendrun.core.errors import EntityNotFound, InvalidOverride
from vendrun.core.metrics import metrics
from vendrun.db.store import find_or_create
from vendrun.models.machine import Coil, CoilItem, Machine
from vendrun.models.run import PickEntry, PickStatus
from vendrun.schemas.run_import import ResolvedEntity
from vendrun.services.count_pointer import resolve_count
from vendrun.services.run_lifecycle import RunLifecycleService

logger = logging.getLogger(__name__)


class PickGenerator:
    """Creates or refreshes PickEntry rows for one run."""

    def __init__(self, db: Session, company_id: int):
        self.db = db
        self.company_id = company_id
        self.lifecycle = RunLifecycleService(db, company_id)

    def _load_coil_items(self, entities: Sequence[ResolvedEntity]) -> dict:
        ids = {e.coil_item_id for e in entities}
        if not ids:
            return {}
        items = (
            self.db.query(CoilItem)
            .join(CoilItem.coil)
            .join(Coil.machine)
            .options(joinedload(CoilItem.sku))
            .filter(CoilItem.id.in_(ids), Machine.company_id == self.company_id)
            .all()
        )
        found = {item.id: item for item in items}
        missing = sorted(ids - set(found))
        if missing:
            raise EntityNotFound("CoilItem", missing[0])
        return found

    def generate(
        self, run_id: int, entities: Sequence[ResolvedEntity]
    ) -> Tuple[List[PickEntry], List[PickEntry]]:
        """Return ``(created, skipped_duplicates)``.

        Every coil item is checked before anything is written, so an unknown
        coil item fails the whole call cleanly.
        """
        run = self.lifecycle.get_run(run_id, for_update=True)
        self.lifecycle.ensure_unlocked(run)
        coil_items = self._load_coil_items(entities)

        created: List[PickEntry] = []
        duplicates: List[PickEntry] = []
        for entity in entities:
            coil_item = coil_items[entity.coil_item_id]
            snapshot = entity.snapshot

            def factory(coil_item=coil_item, entity=entity, snapshot=snapshot):
                return PickEntry(
                    run_id=run.id,
                    coil_item_id=coil_item.id,
                    resolved_count=resolve_count(
                        coil_item, snapshot, coil_item.sku.count_needed_pointer
                    ),
                    override_count=entity.manual_override,
                    status=PickStatus.PENDING.value,
                    current=snapshot.current,
                    par=snapshot.par,
                    need=snapshot.need,
                    forecast=snapshot.forecast,
                    total=snapshot.total,
                    notes=entity.notes,
                )

            pick, was_created = find_or_create(
                self.db,
                lambda coil_item=coil_item: self.db.query(PickEntry).filter(
                    PickEntry.run_id == run.id, PickEntry.coil_item_id == coil_item.id
                ).first(),
                factory,
            )

            if was_created:
                created.append(pick)
                continue

            # Existing line: refresh provenance, keep the frozen count
            pick.current = snapshot.current
            pick.par = snapshot.par
            pick.need = snapshot.need
            pick.forecast = snapshot.forecast
            pick.total = snapshot.total
            if entity.notes:
                pick.notes = entity.notes
            if entity.manual_override is not None:
                if entity.manual_override < pick.expiry_total:
                    raise InvalidOverride(
                        f"override {entity.manual_override} is below the {pick.expiry_total} units "
                        f"already assigned to expiry dates",
                        entity.manual_override,
                    )
                pick.override_count = entity.manual_override
            pick.increment_version()
            if pick not in created and pick not in duplicates:
                duplicates.append(pick)

        metrics.pick_entries_created += len(created)
        self.lifecycle.recompute_status(run)
        self.db.flush()
        logger.info(
            f"Generated picks for run {run.id}: {len(created)} created, "
            f"{len(duplicates)} already present"
        )
        return created, duplicates
