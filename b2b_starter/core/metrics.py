"""Prometheus metrics shared by the HTTP layer and the auth service."""

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "b2b_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "b2b_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
AUTH_LOGINS = Counter(
    "b2b_auth_logins_total",
    "Login attempts by outcome",
    ["outcome"],
)
AUTH_LOCKOUTS = Counter("b2b_auth_lockouts_total", "Accounts locked after repeated failed logins")
AUTH_REFRESH_REUSE = Counter("b2b_auth_refresh_reuse_total", "Revoked refresh tokens presented again")
AUDIT_WRITE_FAILURES = Counter("b2b_audit_write_failures_total", "Audit entries that could not be persisted")
