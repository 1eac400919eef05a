"""Prometheus metrics for monitoring money movement, tool calls, and the chat loop"""

from prometheus_client import Counter, Histogram

# Account operation metrics
operation_counter = Counter(
    "nova_operation_total",
    "Account operations executed",
    ["operation", "outcome"],  # outcome: success | error code
)

money_moved_counter = Counter(
    "nova_money_moved_cents_total",
    "Cents moved by successful operations",
    ["operation"],
)

store_retry_counter = Counter(
    "nova_store_retries_total",
    "Ledger transactions retried after a conflict",
)

# Assistant metrics
tool_call_counter = Counter(
    "nova_tool_calls_total",
    "Tool calls requested by the chat service",
    ["tool", "outcome"],  # success | failure | cancelled | rejected
)

reauth_counter = Counter(
    "nova_reauth_total",
    "Strong re-authentication challenges",
    ["outcome"],  # granted | denied | error | timeout
)

chat_stream_failures_counter = Counter(
    "nova_chat_stream_failures_total",
    "Chat turns aborted by a transport or provider error",
)

chat_round_latency_histogram = Histogram(
    "nova_chat_round_seconds",
    "Time to drain one streamed chat round",
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

insights_generation_counter = Counter(
    "nova_insights_generated_total",
    "Insights cache misses resolved",
    ["outcome"],  # generated | insufficient_data | failed | busy
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_operation(operation: str, success: bool, error_code: str | None = None, amount_cents: int = 0) -> None:
    """Record the outcome of one account operation"""
    outcome = "success" if success else (error_code or "error")
    operation_counter.labels(operation=operation, outcome=outcome).inc()
    if success and amount_cents > 0:
        money_moved_counter.labels(operation=operation).inc(amount_cents)
