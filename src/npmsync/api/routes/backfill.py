"""Operator endpoints for the full-registry backfill."""

from fastapi import APIRouter

from npmsync.dependencies import AppRuntime, RequireAdmin
from npmsync.models.backfill import BackfillState, BackfillStatusReport

router = APIRouter(prefix="/backfill", tags=["Backfill"], dependencies=[RequireAdmin])


@router.get("/status", response_model=BackfillStatusReport)
async def backfill_status(runtime: AppRuntime) -> BackfillStatusReport:
    return await runtime.orchestrator.status_report()


@router.post("/start", response_model=BackfillState, status_code=202)
async def start_backfill(runtime: AppRuntime) -> BackfillState:
    """Mark the backfill running and queue its first tick; 409 unless idle."""
    return await runtime.orchestrator.start()


@router.post("/pause", response_model=BackfillState)
async def pause_backfill(runtime: AppRuntime) -> BackfillState:
    return await runtime.orchestrator.pause()


@router.post("/resume", response_model=BackfillState)
async def resume_backfill(runtime: AppRuntime) -> BackfillState:
    return await runtime.orchestrator.resume()


@router.post("/reset", response_model=BackfillState)
async def reset_backfill(runtime: AppRuntime) -> BackfillState:
    return await runtime.orchestrator.reset()
