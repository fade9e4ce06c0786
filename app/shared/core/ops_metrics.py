"""
Operational metrics for the deletion approval workflow.

Prometheus counters and histograms tracking request transitions,
confirmation outcomes, collaborator failures and expiry sweeps.
"""

from prometheus_client import Counter, Histogram

DELETION_REQUEST_TRANSITIONS_TOTAL = Counter(
    "auditvault_deletion_request_transitions_total",
    "Deletion request state transitions",
    ["resource_kind", "state"],
)

DELETION_IMMEDIATE_TOTAL = Counter(
    "auditvault_deletion_immediate_total",
    "Deletions performed immediately because the resource had no dependents",
    ["resource_kind"],
)

DELETION_CONFIRMATION_EVENTS_TOTAL = Counter(
    "auditvault_deletion_confirmation_events_total",
    "Confirmation code submissions by outcome",
    ["outcome"],  # recorded, idempotent, not_found
)

DELETION_NOTIFICATION_FAILURES_TOTAL = Counter(
    "auditvault_deletion_notification_failures_total",
    "Approver notifications that could not be delivered",
)

DELETION_EXECUTION_ATTEMPTS_TOTAL = Counter(
    "auditvault_deletion_execution_attempts_total",
    "Destructive action attempts by result",
    ["resource_kind", "result"],  # success, failure, exhausted
)

DELETION_STORE_TRANSIENT_ERRORS_TOTAL = Counter(
    "auditvault_deletion_store_transient_errors_total",
    "Store operations that ended in a transient failure",
    ["operation", "reason"],  # reason: timeout, database
)

DELETION_EXPIRY_SWEEP_RUNS_TOTAL = Counter(
    "auditvault_deletion_expiry_sweep_runs_total",
    "Expiry sweep executions by status",
    ["status"],
)

DELETION_STORE_OPERATION_DURATION = Histogram(
    "auditvault_deletion_store_operation_duration_seconds",
    "Duration of bounded deletion workflow store operations",
    ["operation"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10),
)
