"""Analytics routes."""

from typing import Optional

from fastapi import APIRouter, Query, Request

from vendrun.core.rate_limit import limiter
from vendrun.core.tenancy import CompanyId
from vendrun.db.session import DbSession
from vendrun.schemas.analytics import (
    Aggregation,
    BreakdownRequest,
    BreakdownSeries,
    MomentumResponse,
    PeriodComparison,
)
from vendrun.services.analytics_service import AnalyticsService

router = APIRouter()


@router.post("/pick-entries/breakdown", response_model=BreakdownSeries)
@limiter.limit("60/minute")
def get_pick_entry_breakdown(
    request: Request,
    payload: BreakdownRequest,
    db: DbSession,
    company_id: CompanyId,
):
    """Picked units per bucket, split by SKU, machine or location.

    ``week`` always returns the trailing eight days ending today.
    """
    return AnalyticsService(db, company_id).get_breakdown(payload)


@router.get("/momentum", response_model=MomentumResponse)
@limiter.limit("60/minute")
def get_momentum(
    request: Request,
    db: DbSession,
    company_id: CompanyId,
    time_zone: Optional[str] = Query(None),
):
    """Biggest week-over-week risers and fallers."""
    return AnalyticsService(db, company_id).get_momentum(time_zone)


@router.get("/period-comparison", response_model=PeriodComparison)
@limiter.limit("60/minute")
def get_period_comparison(
    request: Request,
    db: DbSession,
    company_id: CompanyId,
    aggregation: Aggregation = Query(Aggregation.WEEK),
    time_zone: Optional[str] = Query(None),
):
    return AnalyticsService(db, company_id).get_period_comparison(aggregation, time_zone)
