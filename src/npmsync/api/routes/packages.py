"""Package endpoints served from the request path."""

from fastapi import APIRouter, Query, Request

from npmsync.api.middleware.rate_limit import limiter
from npmsync.config import settings
from npmsync.dependencies import AppRuntime
from npmsync.errors.exceptions import NotFoundError
from npmsync.models.install_size import InstallSize

router = APIRouter(prefix="/packages", tags=["Packages"])


@router.get("/{name:path}/install-size", response_model=InstallSize, response_model_by_alias=True)
@limiter.limit(settings.install_size_rate_limit)
async def get_install_size(
    request: Request,
    name: str,
    runtime: AppRuntime,
    version: str | None = Query(None, max_length=256),
) -> InstallSize:
    """Total unpacked size of a package and its dependency tree."""
    result = await runtime.install_size.get(name, version)
    if result is None:
        raise NotFoundError("Package", f"{name}@{version}" if version else name)
    return result
