from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from hive_booking.core.request_context import request_id_ctx_var


class BookingError(Exception):
    """Base class for errors raised by the booking core.

    Subclasses carry the HTTP status and error code used when the error
    reaches the API layer, so services never import FastAPI types.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "booking_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def extra_payload(self) -> dict[str, Any]:
        return {}


class BookingValidationError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class SlotConflictError(BookingError):
    """The requested slot was taken between viewing and booking.

    Callers are expected to re-fetch availability and let the user pick
    again instead of retrying the same slot.
    """

    status_code = status.HTTP_409_CONFLICT
    code = "slot_conflict"

    def __init__(
        self,
        conflict_reason: str,
        alternatives: list[dict[str, str]] | None = None,
        suggest_alternatives: bool = True,
    ) -> None:
        super().__init__(conflict_reason)
        self.conflict_reason = conflict_reason
        self.alternatives = alternatives or []
        self.suggest_alternatives = suggest_alternatives

    def extra_payload(self) -> dict[str, Any]:
        return {"conflictReason": self.conflict_reason, "alternatives": self.alternatives}


class InvalidTransitionError(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move appointment from {current} to {target}")
        self.current = current
        self.target = target


class PaymentError(BookingError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "payment_failed"


class TransientStoreError(BookingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "store_unavailable"


def _error_payload(code: str, message: str, detail):
    return {
        "error": {
            "code": code,
            "message": message,
            "detail": detail,
        },
        "detail": detail,
        "request_id": request_id_ctx_var.get(),
    }


async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(
            code=f"http_{exc.status_code}",
            message=str(exc.detail),
            detail=exc.detail,
        ),
        headers=exc.headers,
    )


async def booking_exception_handler(_: Request, exc: BookingError) -> JSONResponse:
    content = _error_payload(code=exc.code, message=exc.message, detail=exc.message)
    content.update(exc.extra_payload())
    return JSONResponse(status_code=exc.status_code, content=content)


async def validation_exception_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed input is a client error and is never retried.
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_payload(
            code="validation_error",
            message="Request validation failed",
            detail=jsonable_errors(exc),
        ),
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    errors = []
    for error in exc.errors():
        item = {key: value for key, value in error.items() if key != "ctx"}
        if "ctx" in error:
            item["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(item)
    return errors
