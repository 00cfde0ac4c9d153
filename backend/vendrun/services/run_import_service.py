"""Run import reconciliation.

Flow:
1. Record the batch as an append-only RunImport snapshot
2. Resolve rows to canonical entities, committing every
   ``import_commit_batch_size`` rows so finished work survives a caller
   timeout
3. Collect malformed rows and negative overrides as failures instead of
   aborting the batch
4. Optionally generate pick entries for a run from the resolved rows

Each commit goes through ``run_in_transaction``; a chunk that hits a
transient store failure is rolled back and replayed, which is safe because
resolution is idempotent.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from vendrun.core.config import settings
from vendrun.core.errors import InvalidOverride, MalformedImportRow
from vendrun.core.metrics import metrics
from vendrun.db.store import run_in_transaction
from vendrun.models.run_import import RunImport, RunImportCoilItem, RunImportMachine
from vendrun.schemas.run_import import (
    GenerateResult,
    ImportRow,
    ReconcileResponse,
    ResolvedEntity,
    RowError,
)
from vendrun.services.entity_resolver import EntityResolver, clean
from vendrun.services.pick_generator import PickGenerator
from vendrun.services.run_lifecycle import RunLifecycleService

logger = logging.getLogger(__name__)


class RunImportService:
    """Reconciles uploaded pick sheets into canonical entities."""

    def __init__(self, db: Session, company_id: int):
        self.db = db
        self.company_id = company_id
        self.resolver = EntityResolver(db, company_id)

    def _record_header(
        self, rows: Sequence[ImportRow], run_id: Optional[int], source: Optional[str]
    ) -> Tuple[int, Dict[str, int]]:
        run_import = RunImport(
            company_id=self.company_id, run_id=run_id, source=source, row_count=len(rows)
        )
        self.db.add(run_import)

        machines: Dict[str, RunImportMachine] = {}
        for row in rows:
            code = clean(row.machine_code)
            if code is None or code in machines:
                continue
            machines[code] = RunImportMachine(
                machine_code=code,
                machine_description=clean(row.machine_description),
                machine_type=clean(row.machine_type),
                location_name=clean(row.location_name),
                location_address=clean(row.location_address),
            )
            run_import.machines.append(machines[code])

        self.db.flush()
        return run_import.id, {code: m.id for code, m in machines.items()}

    def _process_chunk(
        self,
        run_import_id: int,
        machine_ids: Dict[str, int],
        rows: Sequence[ImportRow],
        offset: int,
    ) -> Tuple[List[ResolvedEntity], List[RowError]]:
        resolved: List[ResolvedEntity] = []
        failures: List[RowError] = []

        for position, row in enumerate(rows):
            row_index = offset + position
            self.db.add(
                RunImportCoilItem(
                    run_import_id=run_import_id,
                    import_machine_id=machine_ids.get(clean(row.machine_code)),
                    row_index=row_index,
                    machine_code=clean(row.machine_code),
                    coil_code=clean(row.coil_code),
                    sku_code=clean(row.sku_code),
                    sku_name=clean(row.sku_name),
                    current=row.current,
                    par=row.par,
                    need=row.need,
                    forecast=row.forecast,
                    total=row.total,
                    short=row.short,
                    spoil=row.spoil,
                    inventory_count=row.inventory_count,
                    notes=clean(row.notes),
                )
            )

            savepoint = self.db.begin_nested()
            try:
                resolved.append(self.resolver.resolve(row, row_index))
            except MalformedImportRow as e:
                savepoint.rollback()
                logger.warning(f"Import {run_import_id}: {e.message}")
                failures.append(
                    RowError(row_index=row_index, error=e.code, detail=e.message, missing=e.missing)
                )
                continue
            except InvalidOverride as e:
                savepoint.rollback()
                logger.warning(f"Import {run_import_id}: {e.message}")
                failures.append(
                    RowError(row_index=row_index, error=e.code, detail=e.message, value=e.value)
                )
                continue
            savepoint.commit()

        return resolved, failures

    def reconcile(
        self,
        rows: Sequence[ImportRow],
        run_id: Optional[int] = None,
        source: Optional[str] = None,
    ) -> ReconcileResponse:
        """Resolve *rows*, returning successes and failures side by side."""
        if run_id is not None:
            lifecycle = RunLifecycleService(self.db, self.company_id)
            lifecycle.ensure_unlocked(lifecycle.get_run(run_id))

        run_import_id, machine_ids = run_in_transaction(
            self.db, lambda: self._record_header(rows, run_id, source)
        )

        resolved: List[ResolvedEntity] = []
        failures: List[RowError] = []
        size = settings.import_commit_batch_size
        for offset in range(0, len(rows), size):
            chunk = rows[offset:offset + size]
            chunk_resolved, chunk_failures = run_in_transaction(
                self.db,
                lambda chunk=chunk, offset=offset: self._process_chunk(
                    run_import_id, machine_ids, chunk, offset
                ),
            )
            resolved.extend(chunk_resolved)
            failures.extend(chunk_failures)

        metrics.record_import(len(resolved), len(failures))
        logger.info(
            f"Import {run_import_id}: {len(resolved)} rows resolved, {len(failures)} rejected"
        )

        picks = None
        if run_id is not None and resolved:
            generator = PickGenerator(self.db, self.company_id)

            def generate():
                created, duplicates = generator.generate(run_id, resolved)
                return GenerateResult(
                    created=[p.id for p in created],
                    skipped_duplicates=[p.id for p in duplicates],
                )

            picks = run_in_transaction(self.db, generate)

        return ReconcileResponse(
            run_import_id=run_import_id,
            resolved=resolved,
            failures=failures,
            picks=picks,
        )
