"""SKU routes."""

from fastapi import APIRouter, Request

from vendrun.core.rate_limit import limiter
from vendrun.core.tenancy import CompanyId
from vendrun.db.session import DbSession
from vendrun.db.store import run_in_transaction
from vendrun.schemas.sku import CountPointerUpdate, SKUResponse
from vendrun.services.sku_service import SKUService

router = APIRouter()


@router.get("/{sku_id}", response_model=SKUResponse)
@limiter.limit("60/minute")
def get_sku(request: Request, sku_id: int, db: DbSession, company_id: CompanyId):
    return SKUService(db).get_sku(sku_id)


@router.patch("/{sku_id}/count-pointer", response_model=SKUResponse)
@limiter.limit("30/minute")
def update_count_pointer(
    request: Request,
    sku_id: int,
    payload: CountPointerUpdate,
    db: DbSession,
    company_id: CompanyId,
):
    """Change the field future pick entries for this SKU are counted from."""
    service = SKUService(db)
    sku = run_in_transaction(
        db, lambda: service.set_count_pointer(sku_id, payload.count_needed_pointer)
    )
    return SKUResponse.model_validate(sku)
