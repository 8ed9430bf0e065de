import logging
import time
from uuid import uuid4

from fastapi import FastAPI
from fastapi import HTTPException
from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError

from hive_booking.api.v1.availability import router as availability_router
from hive_booking.api.v1.bookings import router as bookings_router
from hive_booking.api.v1.therapists import router as therapists_router
from hive_booking.api.v1.users import router as users_router
from hive_booking.core.exceptions import (
    BookingError,
    booking_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from hive_booking.core.logging import setup_logging
from hive_booking.core.metrics import REQUEST_COUNT, REQUEST_LATENCY, render_metrics
from hive_booking.core.request_context import request_id_ctx_var

app = FastAPI(title="Hive Wellness Booking", version="0.1.0")
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(BookingError, booking_exception_handler)
setup_logging()
logger = logging.getLogger("hive_booking.request")

app.include_router(availability_router)
app.include_router(bookings_router)
app.include_router(therapists_router)
app.include_router(users_router)


def _route_template(request: Request) -> str:
    # Label metrics by route template so ids in paths do not explode cardinality.
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


@app.middleware("http")
async def observability_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid4())
    token = request_id_ctx_var.set(request_id)
    start = time.perf_counter()
    method = request.method
    try:
        response = await call_next(request)
    except Exception:
        elapsed = time.perf_counter() - start
        path = _route_template(request)
        REQUEST_COUNT.labels(method=method, path=path, status_code=500).inc()
        REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)
        logger.exception(
            "request_failed method=%s path=%s status=500 duration_ms=%.2f",
            method,
            path,
            elapsed * 1000,
        )
        request_id_ctx_var.reset(token)
        raise

    elapsed = time.perf_counter() - start
    path = _route_template(request)
    REQUEST_COUNT.labels(method=method, path=path, status_code=response.status_code).inc()
    REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "request_completed method=%s path=%s status=%s duration_ms=%.2f",
        method,
        path,
        response.status_code,
        elapsed * 1000,
    )
    request_id_ctx_var.reset(token)
    return response


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/metrics", tags=["observability"])
def metrics() -> Response:
    payload, content_type = render_metrics()
    return Response(content=payload, media_type=content_type)
