"""
Codelab Grader - Prometheus Metrics
"""

from prometheus_client import Counter, Histogram

GRADING_ATTEMPTS = Counter(
    "grading_attempts_total",
    "Attempts that finished the grading pipeline",
    ["outcome"],  # persisted | rejected
)

SANDBOX_EXECUTIONS = Counter(
    "sandbox_executions_total",
    "Sandbox executions by termination reason",
    ["termination_reason"],
)

SANDBOX_EXECUTION_SECONDS = Histogram(
    "sandbox_execution_seconds",
    "Wall-clock duration of sandbox executions",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

PERSISTENCE_CONFLICTS = Counter(
    "grading_persistence_conflicts_total",
    "Progress upserts that lost a concurrent update and were retried",
)
