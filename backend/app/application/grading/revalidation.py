"""
Codelab Grader - Revalidation Service
Server-authoritative re-run of a submission and verdict comparison
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

import structlog

from app.domain.grading.entities import (
    Attempt,
    ClientVerdict,
    Submission,
    TestBattery,
)
from app.domain.grading.scoring import calculate_score, determine_status
from app.infrastructure.sandbox.executor import ExecutionReport

logger = structlog.get_logger(__name__)


class Executor(Protocol):
    """Anything that can run a submission against a battery."""

    async def execute(
        self,
        submission: Submission,
        battery: TestBattery,
        time_budget_ms: Optional[int] = None,
    ) -> ExecutionReport:
        ...


async def grade(
    executor: Executor,
    submission: Submission,
    battery: TestBattery,
    time_budget_ms: Optional[int] = None,
) -> Attempt:
    """Execute, score and wrap the result in an Attempt."""
    report = await executor.execute(submission, battery, time_budget_ms)
    score = calculate_score(report.outcomes, battery.weights())
    status = determine_status(score, report.termination_reason, len(battery))
    return Attempt(
        submission=submission,
        outcomes=report.outcomes,
        status=status,
        score=score,
        runtime_logs=report.logs,
        execution_time_ms=report.duration_ms,
        termination_reason=report.termination_reason,
        content_version=battery.content_version,
    )


def compare_verdicts(
    server: ClientVerdict,
    client: ClientVerdict,
    tolerance: float = 0.01,
) -> Optional[str]:
    """
    Compare a server verdict with a client-reported one.

    Returns:
        None when they agree, otherwise a description of the first mismatch
        (for server logs only)
    """
    if server.status != client.status:
        return f"status {client.status.value} != {server.status.value}"

    # Decimal keeps 100.00 vs 99.99 inside a 0.01 tolerance
    delta = abs(Decimal(repr(server.score)) - Decimal(repr(client.score)))
    if delta > Decimal(repr(tolerance)):
        return f"score {client.score} != {server.score}"

    if len(server.passed) != len(client.passed):
        return f"{len(client.passed)} results reported for {len(server.passed)} tests"

    differing = [i for i, (s, c) in enumerate(zip(server.passed, client.passed)) if s != c]
    if differing:
        return f"per-test results differ at indices {differing}"

    return None


@dataclass(frozen=True)
class RevalidationResult:
    """Outcome of revalidation; only ``attempt`` may ever be persisted."""
    accepted: bool
    attempt: Attempt
    reason: Optional[str] = None


class RevalidationService:
    """
    Re-runs submissions on a trusted executor.

    The trusted executor must be a separate instance from the one that
    produced the provisional verdict, configured with identical limits.
    """

    def __init__(self, executor: Executor, tolerance: float = 0.01):
        self._executor = executor
        self._tolerance = tolerance

    async def revalidate(
        self,
        submission: Submission,
        battery: TestBattery,
        client_verdict: ClientVerdict,
        time_budget_ms: Optional[int] = None,
    ) -> RevalidationResult:
        """
        Compute the authoritative attempt and compare verdicts.

        Args:
            submission: The submission to re-run
            battery: The same battery the client verdict was computed on
            client_verdict: Verdict reported by the untrusted tier

        Returns:
            RevalidationResult with the server's attempt
        """
        attempt = await grade(self._executor, submission, battery, time_budget_ms)
        reason = compare_verdicts(attempt.verdict(), client_verdict, self._tolerance)

        logger.debug(
            "Revalidation finished",
            attempt_id=str(attempt.id),
            accepted=reason is None,
            server_status=attempt.status.value,
            server_score=attempt.score,
        )
        return RevalidationResult(accepted=reason is None, attempt=attempt, reason=reason)
