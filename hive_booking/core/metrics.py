from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
)

BOOKING_ATTEMPTS = Counter(
    "booking_attempts_total",
    "Reservation attempts by outcome",
    ["outcome"],
)

AVAILABILITY_QUERIES = Counter(
    "availability_queries_total",
    "Availability queries by cache outcome",
    ["cache"],
)


def render_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
