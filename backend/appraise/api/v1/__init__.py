"""API v1 module."""

from fastapi import APIRouter

from appraise.api.v1.test_runs import router as test_runs_router

router = APIRouter()

router.include_router(test_runs_router, prefix="/test-runs", tags=["Test Runs"])
