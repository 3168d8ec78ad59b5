"""Prometheus metrics for the Gateway Operator."""

from prometheus_client import Counter, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "gateway_operator_reconcile_total",
    "Total number of reconciliations",
    ["kind", "result"],
)

reconcile_duration_seconds = Histogram(
    "gateway_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
)

requeue_total = Counter(
    "gateway_operator_requeue_total",
    "Total number of scheduled requeues",
    ["kind", "reason"],
)

error_total = Counter(
    "gateway_operator_error_total",
    "Total number of reconciliation errors",
    ["kind", "error_type"],
)

resource_status_total = Counter(
    "gateway_operator_resource_status_total",
    "Observed readiness of reconciled resources",
    ["kind", "status"],
)

# Managed child metrics
child_operations_total = Counter(
    "gateway_operator_child_operations_total",
    "Total number of create, update and delete operations on managed children",
    ["kind", "operation"],
)

finalizer_removed_total = Counter(
    "gateway_operator_finalizer_removed_total",
    "Total number of cleanup finalizers removed",
    ["kind", "finalizer"],
)

# API call metrics
api_call_total = Counter(
    "gateway_operator_api_call_total",
    "Total number of API calls",
    ["api_type", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "gateway_operator_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["api_type", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

rate_limit_hits_total = Counter(
    "gateway_operator_rate_limit_hits_total",
    "Total number of rate limit hits",
    ["api_type"],
)

# Watch metrics
reconcile_triggers_total = Counter(
    "gateway_operator_reconcile_triggers_total",
    "Total number of intent resources triggered by changes to related objects",
    ["kind"],
)
