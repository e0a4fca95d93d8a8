"""
Codelab Grader - Progress Reconciler
Persists an accepted attempt and folds it into the user's progress
"""

import asyncio
import weakref
from datetime import datetime
from typing import Callable, Tuple
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from app.core.exceptions import PersistenceConflict
from app.core.metrics import PERSISTENCE_CONFLICTS
from app.domain.grading.entities import Attempt, ProgressRecord, utcnow
from app.domain.grading.progress import merge_fn_for
from app.infrastructure.persistence.base import GradingStore

logger = structlog.get_logger(__name__)


class ProgressReconciler:
    """
    Serializes progress updates per (user, challenge).

    Within a process a keyed lock orders writers; across processes the
    store's conditional update detects lost races, which are retried with
    exponential backoff and jitter.
    """

    def __init__(
        self,
        store: GradingStore,
        max_retries: int = 3,
        retry_base_ms: int = 25,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._max_retries = max_retries
        self._retry_base_s = retry_base_ms / 1000.0
        self._clock = clock
        self._locks: "weakref.WeakValueDictionary[Tuple[UUID, UUID], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, key: Tuple[UUID, UUID]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _persist(self, user_id: UUID, challenge_id: UUID, attempt: Attempt) -> ProgressRecord:
        try:
            async with self._store.transaction() as uow:
                await uow.append_attempt(attempt)
                record = await uow.upsert_progress(
                    user_id,
                    challenge_id,
                    merge_fn_for(attempt, self._clock()),
                )
            return record
        except PersistenceConflict:
            PERSISTENCE_CONFLICTS.inc()
            raise

    async def reconcile(
        self,
        user_id: UUID,
        challenge_id: UUID,
        attempt: Attempt,
    ) -> ProgressRecord:
        """
        Append the attempt and upsert progress in one transaction.

        Returns:
            The progress record after the merge

        Raises:
            PersistenceConflict: If every retry lost a concurrent update
            PersistenceUnavailable: If the store failed
        """
        if (attempt.user_id, attempt.challenge_id) != (user_id, challenge_id):
            raise ValueError("Attempt does not belong to this user and challenge")

        log = logger.bind(
            attempt_id=str(attempt.id),
            user_id=str(user_id),
            challenge_id=str(challenge_id),
        )

        def on_conflict(state: RetryCallState) -> None:
            log.warning(
                "Progress update conflict, retrying",
                retry=state.attempt_number,
                delay_ms=round(state.next_action.sleep * 1000, 1) if state.next_action else 0,
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(PersistenceConflict),
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential_jitter(initial=self._retry_base_s, jitter=self._retry_base_s),
            before_sleep=on_conflict,
            reraise=True,
        )

        async with self._lock_for((user_id, challenge_id)):
            try:
                async for try_state in retrying:
                    with try_state:
                        record = await self._persist(user_id, challenge_id, attempt)
            except PersistenceConflict:
                log.error("Progress update retries exhausted", retries=self._max_retries)
                raise
        return record
