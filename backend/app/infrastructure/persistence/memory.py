"""
In-memory grading store

Used by tests and single-process local runs. Commits are checked against
the version each staged record was read at, the same way the SQL store's
conditional update is.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, List, Optional, Tuple
from uuid import UUID

import structlog

from app.core.exceptions import PersistenceConflict
from app.domain.grading.entities import Attempt, ProgressRecord
from app.domain.grading.progress import MergeFn

from .base import GradingStore, GradingUnitOfWork

logger = structlog.get_logger(__name__)

ProgressKey = Tuple[UUID, UUID]


class InMemoryUnitOfWork(GradingUnitOfWork):

    def __init__(self, store: "InMemoryGradingStore"):
        self._store = store
        self._attempts: List[Attempt] = []
        # key -> (version read, new record)
        self._progress: Dict[ProgressKey, Tuple[int, ProgressRecord]] = {}

    async def append_attempt(self, attempt: Attempt) -> None:
        self._attempts.append(attempt)

    async def upsert_progress(
        self,
        user_id: UUID,
        challenge_id: UUID,
        merge_fn: MergeFn,
    ) -> ProgressRecord:
        key = (user_id, challenge_id)
        if key in self._progress:
            read_version, prior = self._progress[key]
        else:
            prior = self._store._progress.get(key)
            read_version = prior.version if prior else 0

        record = merge_fn(prior)
        self._progress[key] = (read_version, record)
        return record

    def commit(self) -> None:
        """Apply all staged writes, or none of them."""
        for key, (read_version, _) in self._progress.items():
            current = self._store._progress.get(key)
            current_version = current.version if current else 0
            if current_version != read_version:
                raise PersistenceConflict(
                    f"progress {key[0]}/{key[1]} moved from version "
                    f"{read_version} to {current_version}"
                )

        self._store._attempts.extend(self._attempts)
        for key, (_, record) in self._progress.items():
            self._store._progress[key] = record


class InMemoryGradingStore(GradingStore):
    """Process-local store with optimistic version checks."""

    def __init__(self):
        self._attempts: List[Attempt] = []
        self._progress: Dict[ProgressKey, ProgressRecord] = {}

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[InMemoryUnitOfWork, None]:
        uow = InMemoryUnitOfWork(self)
        yield uow
        uow.commit()

    async def get_progress(
        self,
        user_id: UUID,
        challenge_id: UUID,
    ) -> Optional[ProgressRecord]:
        return self._progress.get((user_id, challenge_id))

    async def list_attempts(
        self,
        user_id: UUID,
        challenge_id: Optional[UUID] = None,
        limit: int = 50,
    ) -> List[Attempt]:
        matching = [
            (a.created_at, position, a)
            for position, a in enumerate(self._attempts)
            if a.user_id == user_id
            and (challenge_id is None or a.challenge_id == challenge_id)
        ]
        matching.sort(key=lambda item: item[:2], reverse=True)
        return [a for _, _, a in matching[:limit]]

    @property
    def attempt_count(self) -> int:
        return len(self._attempts)
