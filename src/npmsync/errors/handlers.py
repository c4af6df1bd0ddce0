"""Exception handlers that render every failure as an ErrorResponse envelope."""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from npmsync.errors.exceptions import AuthorizationError, NpmSyncError
from npmsync.models.common import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


def _envelope(request: Request, status_code: int, code: str, message: str, details=None) -> JSONResponse:
    body = ErrorResponse(
        error=ErrorDetail(
            code=code,
            message=message,
            details=details,
            trace_id=getattr(request.state, "trace_id", "unknown"),
            timestamp=datetime.now(timezone.utc),
        )
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NpmSyncError)
    async def npmsync_error_handler(request: Request, exc: NpmSyncError):
        if exc.status_code >= 500:
            logger.error("%s %s failed with %s: %s", request.method, request.url.path, exc.code, exc.message)
        elif isinstance(exc, AuthorizationError):
            logger.warning("operator access denied on %s %s", request.method, request.url.path)
        return _envelope(request, exc.status_code, exc.code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        problems = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        return _envelope(request, 422, "VALIDATION_ERROR", "Request body or parameters are invalid", problems)
