import logging
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(Exception):
    status_code = 400
    code = "domain_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.message, "error": self.code}
        payload.update(self.details)
        return payload


class ValidationError(DomainError):
    """Rejected user input or a business rule that blocks the action. Nothing was written."""

    status_code = 400
    code = "validation_error"


class ClearanceLockedError(ValidationError):
    status_code = 409
    code = "clearance_locked"


class ImmutableRecordError(ValidationError):
    status_code = 409
    code = "immutable_record"


class RowNotFoundError(DomainError):
    status_code = 404
    code = "not_found"


class PersistenceError(DomainError):
    """A write failed and was rolled back."""

    status_code = 500
    code = "persistence_error"


class PartialWriteError(PersistenceError):
    """A sequenced write failed after earlier steps were committed.

    ``completed_steps`` are durable; ``failed_step`` and anything after it were not
    applied and can be retried on their own.
    """

    code = "partial_write"

    def __init__(self, message: str, failed_step: str, completed_steps: List[str], **details: Any) -> None:
        super().__init__(message, failed_step=failed_step, completed_steps=list(completed_steps), **details)
        self.failed_step = failed_step
        self.completed_steps = list(completed_steps)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # type: ignore[override]
        return JSONResponse(
            status_code=422,
            content={
                "detail": "Validation failed.",
                "errors": exc.errors(),
                "path": str(request.url),
            },
        )

    @app.exception_handler(DomainError)
    async def domain_exception_handler(request: Request, exc: DomainError) -> JSONResponse:  # type: ignore[override]
        if isinstance(exc, PersistenceError):
            logger.error("Persistence failure on %s: %s", request.url.path, exc.message, extra=exc.details)
        payload = exc.to_payload()
        payload["path"] = str(request.url)
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # type: ignore[override]
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error.",
                "path": str(request.url),
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # type: ignore[override]
        payload: Dict[str, Any] = {"detail": exc.detail or "HTTP error.", "path": str(request.url)}
        if exc.headers:
            payload["headers"] = exc.headers
        return JSONResponse(status_code=exc.status_code, content=payload)

