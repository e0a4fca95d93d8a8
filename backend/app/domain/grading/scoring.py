"""
Codelab Grader - Scorer
Converts test outcomes into a score and an attempt status
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from app.domain.grading.entities import AttemptStatus, TerminationReason, TestOutcome

MAX_SCORE = 100.0
_TWO_PLACES = Decimal("0.01")


def round_score(value: float) -> float:
    """Clamp to [0, 100] and round half-up to two decimals."""
    clamped = min(MAX_SCORE, max(0.0, float(value)))
    return float(Decimal(repr(clamped)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def calculate_score(
    outcomes: Sequence[TestOutcome],
    weights: Optional[Sequence[float]] = None,
) -> float:
    """
    Weighted percentage of passed outcomes.

    Args:
        outcomes: Outcomes index-aligned with the battery
        weights: Optional weights index-aligned with ``outcomes``;
                 uniform weight 1 when omitted

    Returns:
        Score in [0, 100] with two-decimal precision
    """
    if weights is None:
        weights = [1.0] * len(outcomes)
    if len(weights) != len(outcomes):
        raise ValueError(
            f"Got {len(weights)} weights for {len(outcomes)} outcomes"
        )

    total = sum(weights)
    if not outcomes or total <= 0:
        return 0.0

    earned = sum(w for outcome, w in zip(outcomes, weights) if outcome.passed)
    return round_score(MAX_SCORE * earned / total)


def determine_status(
    score: float,
    termination_reason: TerminationReason,
    test_count: int,
) -> AttemptStatus:
    """
    Map a score and the executor's termination reason to a status.

    An empty battery or an abnormal termination is always an error; a
    perfect score is a pass; anything else is a fail.
    """
    if test_count == 0 or termination_reason != TerminationReason.COMPLETED:
        return AttemptStatus.ERROR
    if score == MAX_SCORE:
        return AttemptStatus.PASS
    return AttemptStatus.FAIL
