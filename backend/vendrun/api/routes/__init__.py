"""API routes."""

from fastapi import APIRouter

from vendrun.api.routes import analytics, run_imports, runs, skus

api_router = APIRouter()

api_router.include_router(run_imports.router, prefix="/run-imports", tags=["run-imports"])
api_router.include_router(runs.router, prefix="/runs", tags=["runs"])
api_router.include_router(skus.router, prefix="/skus", tags=["skus"])
api_router.include_router(analytics.router, prefix="/analytics", tags=["analytics"])
