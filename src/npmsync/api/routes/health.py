"""Health, readiness and queue backlog endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from npmsync import __version__
from npmsync.dependencies import AppRuntime

router = APIRouter()


async def _check_database(request: Request) -> str:
    try:
        async with request.app.state.db_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        return f"error: {exc}"
    return "ok"


async def _check_redis(request: Request) -> str:
    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        return "disabled"
    try:
        await redis.ping()
    except Exception as exc:
        return f"error: {exc}"
    return "ok"


@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "npmsync", "version": __version__}


@router.get("/health/live")
async def liveness():
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness(request: Request):
    """503 when the database or a configured Redis cannot be reached."""
    checks = {
        "database": await _check_database(request),
        "redis": await _check_redis(request),
    }
    ready = all(value in ("ok", "disabled") for value in checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )


@router.get("/health/queues")
async def queue_backlog(runtime: AppRuntime):
    """Waiting, delayed, active and failed job counts per queue."""
    backlog = {}
    for name, queue in runtime.queues.items():
        counts = await queue.counts()
        backlog[name] = {
            "waiting": counts.waiting,
            "delayed": counts.delayed,
            "active": counts.active,
            "failed": counts.failed,
        }
    return {"queues": backlog}
