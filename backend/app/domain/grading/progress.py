"""
Codelab Grader - Progress Merge
Monotonic merge of an accepted attempt into a progress record
"""

from datetime import datetime
from typing import Callable, Optional

from app.domain.grading.entities import (
    Attempt,
    ProgressRecord,
    ProgressStatus,
    utcnow,
)
from app.domain.grading.scoring import MAX_SCORE

MergeFn = Callable[[Optional[ProgressRecord]], ProgressRecord]


def merge_progress(
    prior: Optional[ProgressRecord],
    attempt: Attempt,
    now: Optional[datetime] = None,
) -> ProgressRecord:
    """
    Fold one accepted attempt into the prior progress record.

    This is a pure function of ``(prior, attempt)``: best score only grows,
    the attempt counter grows by exactly one, and ``completed`` is terminal
    with ``completed_at`` set once on the transition into it.

    Args:
        prior: Current record, or None if the user never attempted the challenge
        attempt: The accepted (revalidated) attempt
        now: Timestamp to record; defaults to the current UTC time

    Returns:
        The new progress record with its version bumped
    """
    now = now or utcnow()
    perfect = attempt.score >= MAX_SCORE

    if prior is None:
        return ProgressRecord(
            user_id=attempt.user_id,
            challenge_id=attempt.challenge_id,
            status=ProgressStatus.COMPLETED if perfect else ProgressStatus.IN_PROGRESS,
            best_score=attempt.score,
            total_attempts=1,
            completed_at=now if perfect else None,
            last_attempt_at=now,
            version=1,
        )

    if prior.key != (attempt.user_id, attempt.challenge_id):
        raise ValueError("Attempt does not belong to this progress record")

    status = prior.status
    completed_at = prior.completed_at
    if status == ProgressStatus.COMPLETED:
        pass
    elif perfect:
        status = ProgressStatus.COMPLETED
        completed_at = now
    else:
        status = ProgressStatus.IN_PROGRESS

    return prior.evolve(
        status=status,
        best_score=max(prior.best_score, attempt.score),
        total_attempts=prior.total_attempts + 1,
        completed_at=completed_at,
        last_attempt_at=now,
        version=prior.version + 1,
    )


def merge_fn_for(attempt: Attempt, now: Optional[datetime] = None) -> MergeFn:
    """Bind an attempt into the ``prior -> new`` shape the store expects."""
    def _merge(prior: Optional[ProgressRecord]) -> ProgressRecord:
        return merge_progress(prior, attempt, now)
    return _merge
