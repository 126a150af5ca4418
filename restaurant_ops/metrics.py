"""
Prometheus metrics: orders created, status transitions committed/rejected, access denials.
"""
from prometheus_client import Counter, generate_latest

orders_created_total = Counter(
    "orders_created_total",
    "Total orders created",
)

# Committed status changes (by edge of the order state machine)
order_transitions_total = Counter(
    "order_transitions_total",
    "Total order status transitions committed",
    ["from_status", "to_status"],
)
order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total order status transitions rejected",
    ["reason"],
)

access_denied_total = Counter(
    "access_denied_total",
    "Total requests denied for missing capabilities or role hierarchy",
    ["role"],
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
