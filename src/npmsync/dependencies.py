"""FastAPI dependency injection providers."""

import hmac
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, Request

from npmsync.config import settings
from npmsync.errors.exceptions import AuthenticationError, AuthorizationError


async def get_db(request: Request) -> AsyncGenerator:
    """Yield a database session from the app's session factory."""
    session_factory = request.app.state.db_session_factory
    async with session_factory() as session:
        yield session


def get_runtime(request: Request):
    return request.app.state.runtime


async def get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """User id forwarded by the authenticating gateway."""
    if not x_user_id:
        raise AuthenticationError("X-User-Id header required")
    return x_user_id


async def require_admin(x_admin_secret: Annotated[str | None, Header()] = None) -> None:
    if not x_admin_secret or not hmac.compare_digest(x_admin_secret, settings.admin_secret):
        raise AuthorizationError()


# Type aliases for dependency injection
DBSession = Annotated[object, Depends(get_db)]
AppRuntime = Annotated[object, Depends(get_runtime)]
UserId = Annotated[str, Depends(get_user_id)]
RequireAdmin = Depends(require_admin)
