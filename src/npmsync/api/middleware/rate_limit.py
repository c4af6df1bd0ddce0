"""Per-client rate limiting using slowapi."""

import logging

from fastapi import Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from npmsync.config import settings

logger = logging.getLogger(__name__)


def get_rate_limit_key(request: Request) -> str:
    """Use the forwarded user id when present, the client address otherwise."""
    user_id = request.headers.get("x-user-id")
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=[],
    storage_uri="memory://" if settings.local_mode else settings.redis_url,
    enabled=settings.rate_limit_enabled,
)


def setup_rate_limiter(app) -> None:
    """Attach the slowapi limiter to the FastAPI app."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    logger.info(
        "Rate limiter configured (install-size=%s, enabled=%s)",
        settings.install_size_rate_limit, settings.rate_limit_enabled,
    )
