"""
Unit tests for progress reconciliation and the in-memory store.

Tests:
- Atomic attempt append + progress upsert
- Conditional commits and conflict retries
- No lost updates under concurrent reconciles
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest

from app.application.grading.reconciler import ProgressReconciler
from app.core.exceptions import PersistenceConflict
from app.domain.grading.entities import (
    Attempt,
    AttemptStatus,
    ProgressStatus,
    Submission,
)
from app.domain.grading.progress import merge_fn_for
from app.infrastructure.persistence.memory import InMemoryGradingStore

T0 = datetime(2026, 3, 1, tzinfo=timezone.utc)


def make_attempt(user_id, challenge_id, score: float) -> Attempt:
    return Attempt(
        submission=Submission(user_id=user_id, challenge_id=challenge_id),
        outcomes=(),
        status=AttemptStatus.PASS if score == 100 else AttemptStatus.FAIL,
        score=score,
        content_version="v1",
    )


class FlakyStore(InMemoryGradingStore):
    """Fails the first ``conflicts`` commits with a conflict."""

    def __init__(self, conflicts: int):
        super().__init__()
        self.conflicts = conflicts
        self.transactions = 0

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        async with super().transaction() as uow:
            yield uow
            if self.conflicts:
                self.conflicts -= 1
                raise PersistenceConflict("simulated concurrent writer")


class TestInMemoryStore:

    def test_commit_applies_attempt_and_progress(self, user_id, challenge_id):
        store = InMemoryGradingStore()
        attempt = make_attempt(user_id, challenge_id, 50.0)

        async def scenario():
            async with store.transaction() as uow:
                await uow.append_attempt(attempt)
                await uow.upsert_progress(user_id, challenge_id, merge_fn_for(attempt, T0))
            return await store.get_progress(user_id, challenge_id)

        record = asyncio.run(scenario())
        assert record.best_score == 50.0
        assert store.attempt_count == 1

    def test_failed_transaction_leaves_no_trace(self, user_id, challenge_id):
        store = InMemoryGradingStore()
        attempt = make_attempt(user_id, challenge_id, 50.0)

        async def scenario():
            async with store.transaction() as uow:
                await uow.append_attempt(attempt)
                raise RuntimeError("abort")

        with pytest.raises(RuntimeError):
            asyncio.run(scenario())
        assert store.attempt_count == 0

    def test_stale_commit_conflicts(self, user_id, challenge_id):
        store = InMemoryGradingStore()
        first = make_attempt(user_id, challenge_id, 40.0)
        second = make_attempt(user_id, challenge_id, 60.0)

        async def scenario():
            slow = store.transaction()
            slow_uow = await slow.__aenter__()
            await slow_uow.append_attempt(second)
            await slow_uow.upsert_progress(user_id, challenge_id, merge_fn_for(second, T0))

            async with store.transaction() as uow:
                await uow.append_attempt(first)
                await uow.upsert_progress(user_id, challenge_id, merge_fn_for(first, T0))

            await slow.__aexit__(None, None, None)

        with pytest.raises(PersistenceConflict) as exc_info:
            asyncio.run(scenario())

        # Keys and versions stay in the server-side reason
        assert exc_info.value.detail == "Progress could not be saved, please retry"
        assert str(user_id) not in str(exc_info.value)
        assert str(user_id) in exc_info.value.reason

        # Only the winning transaction is visible
        assert store.attempt_count == 1
        record = asyncio.run(store.get_progress(user_id, challenge_id))
        assert record.best_score == 40.0
        assert record.total_attempts == 1

    def test_list_attempts_newest_first(self, user_id, challenge_id):
        store = InMemoryGradingStore()
        reconciler = ProgressReconciler(store, retry_base_ms=0)
        attempts = [make_attempt(user_id, challenge_id, s) for s in (10.0, 20.0, 30.0)]

        async def scenario():
            for attempt in attempts:
                await reconciler.reconcile(user_id, challenge_id, attempt)
            return await store.list_attempts(user_id, limit=2)

        listed = asyncio.run(scenario())
        assert [a.score for a in listed] == [30.0, 20.0]


class TestProgressReconciler:

    def test_first_attempt_creates_progress(self, user_id, challenge_id):
        store = InMemoryGradingStore()
        reconciler = ProgressReconciler(store, clock=lambda: T0)

        record = asyncio.run(
            reconciler.reconcile(user_id, challenge_id, make_attempt(user_id, challenge_id, 100.0))
        )

        assert record.status == ProgressStatus.COMPLETED
        assert record.completed_at == T0
        assert record.total_attempts == 1

    def test_retries_after_conflict(self, user_id, challenge_id):
        store = FlakyStore(conflicts=2)
        reconciler = ProgressReconciler(store, max_retries=3, retry_base_ms=0)

        record = asyncio.run(
            reconciler.reconcile(user_id, challenge_id, make_attempt(user_id, challenge_id, 70.0))
        )

        assert store.transactions == 3
        assert record.total_attempts == 1
        assert store.attempt_count == 1  # rejected commits apply nothing

    def test_gives_up_after_max_retries(self, user_id, challenge_id):
        store = FlakyStore(conflicts=10)
        reconciler = ProgressReconciler(store, max_retries=2, retry_base_ms=0)

        with pytest.raises(PersistenceConflict) as exc_info:
            asyncio.run(
                reconciler.reconcile(user_id, challenge_id, make_attempt(user_id, challenge_id, 70.0))
            )

        assert exc_info.value.retryable is True
        assert store.transactions == 3

    def test_rejects_foreign_attempt(self, user_id, challenge_id):
        reconciler = ProgressReconciler(InMemoryGradingStore())
        attempt = make_attempt(user_id, challenge_id, 10.0)
        with pytest.raises(ValueError):
            asyncio.run(reconciler.reconcile(challenge_id, user_id, attempt))

    def test_concurrent_reconciles_lose_no_updates(self, user_id, challenge_id):
        store = InMemoryGradingStore()
        # Two reconcilers model two processes sharing one store
        reconcilers = [
            ProgressReconciler(store, max_retries=50, retry_base_ms=0),
            ProgressReconciler(store, max_retries=50, retry_base_ms=0),
        ]
        scores = [float(s) for s in range(0, 100, 5)] + [100.0]

        async def scenario():
            await asyncio.gather(*(
                reconcilers[i % 2].reconcile(
                    user_id, challenge_id, make_attempt(user_id, challenge_id, score)
                )
                for i, score in enumerate(scores)
            ))
            return await store.get_progress(user_id, challenge_id)

        record = asyncio.run(scenario())

        assert record.total_attempts == len(scores)
        assert record.best_score == 100.0
        assert record.status == ProgressStatus.COMPLETED
        assert store.attempt_count == len(scores)
        assert record.version == len(scores)
