from __future__ import annotations

from prometheus_client import Counter, Histogram

# DB
DB_WRITE_TOTAL = Counter(
    "bulkflow_db_write_total",
    "DB write statements by table, operation type and status",
    ["table", "op_type", "status"],
)
DB_WRITE_LATENCY_SECONDS = Histogram(
    "bulkflow_db_write_latency_seconds",
    "DB write statement latency",
    ["table", "op_type"],
)
CHECKPOINTS_TOTAL = Counter(
    "bulkflow_checkpoints_total",
    "Transaction checkpoint events (acquired, rejected, rolled_back, released)",
    ["event"],
)

# Orchestration
RECORDS_TOTAL = Counter(
    "bulkflow_records_total",
    "Records attempted by operation and outcome",
    ["operation", "status"],
)
CHUNK_LATENCY_SECONDS = Histogram(
    "bulkflow_chunk_latency_seconds",
    "Wall time of one chunk including hooks",
    ["operation"],
)
RETRY_JOBS_SCHEDULED_TOTAL = Counter(
    "bulkflow_retry_jobs_scheduled_total",
    "Retry jobs scheduled",
    ["operation"],
)
RETRY_EXHAUSTED_TOTAL = Counter(
    "bulkflow_retry_exhausted_total",
    "Failures that became terminal",
    ["operation"],
)

# Queue
QUEUE_JOBS_SCHEDULED_TOTAL = Counter(
    "bulkflow_queue_jobs_scheduled_total",
    "Jobs written to the queue",
    ["queue"],
)
QUEUE_JOBS_CLAIMED_TOTAL = Counter(
    "bulkflow_queue_jobs_claimed_total",
    "Due jobs claimed by a consumer",
    ["queue"],
)
QUEUE_JOBS_ACK_TOTAL = Counter(
    "bulkflow_queue_jobs_ack_total",
    "Jobs acknowledged (deleted) after execution",
    ["queue"],
)
QUEUE_CLAIM_LATENCY_SECONDS = Histogram(
    "bulkflow_queue_claim_latency_seconds",
    "Latency of claim calls that returned jobs",
    ["queue"],
)
