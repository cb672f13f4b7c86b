"""Prometheus metrics definitions for the step sync service."""

from prometheus_client import Counter, Gauge, Histogram, Info

# -- Service info --
SERVICE_INFO = Info("step_sync", "Step sync service info")

# -- Ledger --
RECORDS_STORED = Gauge(
    "step_sync_records_stored",
    "Current number of step records in the ledger",
)
SUBMISSIONS_ACCEPTED = Counter(
    "step_sync_submissions_accepted_total",
    "Total step submissions appended to the ledger",
)
SUBMISSIONS_REJECTED = Counter(
    "step_sync_submissions_rejected_total",
    "Total step submissions rejected",
    ["reason"],
)
STORAGE_WRITE_DURATION = Histogram(
    "step_sync_storage_write_duration_seconds",
    "Ledger store write latency",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

# -- Upload scheduler --
UPLOAD_OUTCOMES = Counter(
    "step_sync_upload_outcomes_total",
    "Upload scheduler notification outcomes",
    ["outcome"],
)
UPLOAD_DURATION = Histogram(
    "step_sync_upload_duration_seconds",
    "Outbound step submission latency",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# -- HTTP --
HTTP_REQUESTS_TOTAL = Counter(
    "step_sync_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
