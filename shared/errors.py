"""
Error taxonomy shared by every service.

Each error carries the HTTP status it maps to and optional context that is
merged into the `{success: false, message}` body returned to API callers.
Gateway acknowledgements never go through these handlers: the callback
endpoint converts failures into its own acknowledgement codes.
"""
from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = structlog.get_logger(__name__)


class ServiceError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None, **context: Any):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.context = context

    def to_body(self) -> dict:
        return {"success": False, "message": self.message, **self.context}


class ValidationError(ServiceError):
    """Bad caller input. Raised before any side effect."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, field: Optional[str] = None, **context: Any):
        if field is not None:
            context["field"] = field
        super().__init__(message, **context)
        self.field = field


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class UpstreamError(ServiceError):
    """The payment gateway refused or did not answer."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class GatewayAuthError(UpstreamError):
    pass


class PersistenceError(ServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class CallbackShapeError(ServiceError):
    """Malformed webhook envelope; acknowledged with the retry code, never a 5xx."""

    status_code = status.HTTP_200_OK


def _field_path(loc) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path")]
    return ".".join(parts) or "body"


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        status_code=exc.status_code,
        message=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {"loc": ("body",), "msg": "Invalid request"}
    field = _field_path(first.get("loc", ()))
    message = f"{field}: {first.get('msg', 'Invalid value')}"
    logger.info("request_validation_failed", path=request.url.path, field=field, error_count=len(errors))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": message, "field": field},
    )


async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("store_error", path=request.url.path, error_type=type(exc).__name__, error=str(exc))
    return await service_error_handler(request, PersistenceError("Order store unavailable"))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(SQLAlchemyError, store_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
