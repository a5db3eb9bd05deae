"""
Prometheus counters for the classification pipeline

Exposed by the API at /metrics (when METRICS_ENABLED) through
prometheus_client's default registry.
"""
from prometheus_client import Counter

CLASSIFIER_CALLS = Counter(
    "expense_classifier_calls_total",
    "Reasoning-service classification calls",
    ["outcome"],
)

CLASSIFICATION_CACHE_HITS = Counter(
    "expense_classification_cache_hits_total",
    "Transactions classified from the classification cache",
)

CLASSIFICATION_FAILURES = Counter(
    "expense_classification_failures_total",
    "Transactions that ended with an error event",
)

AUTO_SORTED_TRANSACTIONS = Counter(
    "expense_auto_sorted_transactions_total",
    "Transactions updated by auto-sort rules",
    ["path"],
)
