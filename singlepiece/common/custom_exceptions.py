from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError

from singlepiece import logger
from singlepiece.common.constants import request_id_ctx
from singlepiece.common.utils import build_error, json_error


class DomainError(Exception):
    """Base for failures of the reservation and ledger flows.

    Each subclass fixes the error `code` and HTTP status the API answers with;
    `extra` is merged into the error details (e.g. `timeLeft`).
    """
    code = "DOMAIN_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request could not be completed"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def details(self) -> Dict[str, Any]:
        return {"message": self.message, **self.extra}


class NotFound(DomainError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ItemSold(DomainError):
    code = "ITEM_SOLD"
    status_code = status.HTTP_410_GONE
    default_message = "This item has already been sold"


class ItemReservedByOther(DomainError):
    code = "ITEM_RESERVED"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This item is currently reserved by another buyer"

    def __init__(self, message: Optional[str] = None, *, time_left: int = 0, **extra: Any):
        super().__init__(message, timeLeft=time_left, **extra)
        self.time_left = time_left


class ClaimConflict(DomainError):
    code = "CLAIM_CONFLICT"
    status_code = status.HTTP_409_CONFLICT
    default_message = "The item changed while reserving it, please try again"


class LedgerWriteError(ClaimConflict):
    code = "LEDGER_WRITE_FAILED"
    default_message = "Could not record your order, please try again"


class ReservationExpired(DomainError):
    code = "RESERVATION_EXPIRED"
    status_code = status.HTTP_410_GONE
    default_message = "Reservation expired, please reserve the item again"


class ReservationMismatch(DomainError):
    code = "RESERVATION_MISMATCH"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Reservation is not held under this order"


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class ConflictingState(DomainError):
    code = "CONFLICTING_STATE"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Operation is not allowed in the current state"


async def domain_error_handler(request: Request, exc: DomainError):
    rid = request_id_ctx.get(None)
    logger.info(
        "domain.error",
        extra={
            "code": exc.code,
            "status_code": exc.status_code,
            "path": request.url.path,
            "request_id": rid,
        },
    )
    payload = build_error(code=exc.code, details=exc.details(), request_id=rid)
    return json_error(payload, status_code=exc.status_code)


async def fallback_handler(request: Request, exc: Exception):

    rid = request_id_ctx.get(None)

    logger.error(
        "unexpected.exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "request_id": rid,
        },
        exc_info=exc,
    )

    payload = build_error(code="SERVER_ERROR", details={"message": "Internal Server Error"}, request_id=rid)
    return json_error(payload, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = request_id_ctx.get(None)
    logger.warning(
        "request.validation_failed",
        extra={
            "errors": exc.errors(),
            "path": request.url.path,
            "request_id": rid,
        },
    )

    payload = build_error(code="UNPROCESSABLE_ENTITY", details={"message": "invalid request"}, request_id=rid)
    return json_error(payload, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


async def http_exception_handler(request: Request, exc: HTTPException):

    rid = request_id_ctx.get(None)
    payload = build_error(code=f"HTTP_{exc.status_code}", details={"message": exc.detail}, request_id=rid)
    return json_error(payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


def register_all_exceptions(app: FastAPI):

    app.add_exception_handler(
        Exception, # catch all unidentified/unhandled exceptions
        fallback_handler
    )

    app.add_exception_handler(
        DomainError,
        domain_error_handler
    )

    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler
    )

    app.add_exception_handler(
        HTTPException,
        http_exception_handler
    )
