from prometheus_client import Counter

# purpose: Prometheus counters for access decisions and the best-effort audit writer
# status: active

ACCESS_DECISIONS = Counter(
    "access_decisions_total",
    "Access decisions by policy and outcome",
    ["policy", "outcome"],
)
AUDIT_DROPPED = Counter(
    "audit_log_dropped_total",
    "Audit or security entries dropped because the writer queue was full",
)
AUDIT_WRITE_FAILURES = Counter(
    "audit_log_write_failures_total",
    "Audit or security entries lost to a failed write",
)
