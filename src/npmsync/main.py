"""FastAPI application factory and lifespan management."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from npmsync import __version__
from npmsync.config import settings
from npmsync.logging_config import configure_logging
from npmsync.runtime import Runtime

# Configure logging at import time
configure_logging(log_level=settings.log_level, json_output=not settings.local_mode)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown resources."""
    runtime = await Runtime.create(settings)
    app.state.runtime = runtime
    app.state.db_engine = runtime.engine
    app.state.db_session_factory = runtime.session_factory
    app.state.redis = runtime.redis

    # Without Redis the queues are in-process, so the API consumes them itself
    worker_task = None
    if settings.local_mode:
        worker_task = asyncio.create_task(runtime.run_workers())

    logger.info("npmsync API started (db=%s)", "sqlite" if settings.local_mode else "postgresql")
    yield

    if worker_task is not None:
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
    await runtime.aclose()
    logger.info("npmsync API shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="npmsync API",
        version=__version__,
        description="npm registry mirror: backfill control, install sizes and update notifications.",
        lifespan=lifespan,
    )

    from npmsync.api.middleware.trace_id import TraceIdMiddleware
    app.add_middleware(TraceIdMiddleware)

    from npmsync.errors.handlers import register_exception_handlers
    register_exception_handlers(app)

    from npmsync.api.middleware.rate_limit import setup_rate_limiter
    setup_rate_limiter(app)

    from npmsync.api.router import api_router
    app.include_router(api_router)

    return app


app = create_app()
