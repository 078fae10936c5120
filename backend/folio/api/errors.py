"""Map domain errors onto HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from folio.core.errors import ErrorKind, FolioError

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INSUFFICIENT_SHARES: status.HTTP_409_CONFLICT,
    ErrorKind.INSUFFICIENT_LOTS: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_ALLOCATION: status.HTTP_409_CONFLICT,
    ErrorKind.NO_CONVERGENCE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.UPSTREAM_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.CANCELLED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: FolioError) -> int:
    return STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


async def folio_error_handler(request: Request, exc: FolioError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %r", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content=exc.to_dict())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FolioError, folio_error_handler)


__all__ = ["STATUS_BY_KIND", "folio_error_handler", "install_error_handlers", "status_for"]
