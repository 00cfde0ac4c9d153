"""Run import routes."""

import logging

from fastapi import APIRouter, Request, status

from vendrun.core.rate_limit import limiter
from vendrun.core.tenancy import CompanyId
from vendrun.db.session import DbSession
from vendrun.schemas.run_import import ReconcileRequest, ReconcileResponse
from vendrun.services.run_import_service import RunImportService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=ReconcileResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def reconcile_import_batch(
    request: Request,
    payload: ReconcileRequest,
    db: DbSession,
    company_id: CompanyId,
):
    """Resolve a pick sheet into canonical entities.

    Malformed rows are reported in ``failures`` while the rest of the batch
    is still resolved. When ``run_id`` is given, pick entries are generated
    for that run from the resolved rows.
    """
    service = RunImportService(db, company_id)
    return service.reconcile(payload.rows, run_id=payload.run_id, source=payload.source)
