"""
Codelab Grader - Persistence Interface
Attempt log and progress records behind a transactional unit of work
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import List, Optional
from uuid import UUID

from app.domain.grading.entities import Attempt, ProgressRecord
from app.domain.grading.progress import MergeFn


class GradingUnitOfWork(ABC):
    """Writes staged by one transaction; committed atomically on exit."""

    @abstractmethod
    async def append_attempt(self, attempt: Attempt) -> None:
        """Append an attempt to the log."""

    @abstractmethod
    async def upsert_progress(
        self,
        user_id: UUID,
        challenge_id: UUID,
        merge_fn: MergeFn,
    ) -> ProgressRecord:
        """
        Read the current record, apply ``merge_fn`` and stage the result.

        The write is conditional on the version that was read.

        Raises:
            PersistenceConflict: If a concurrent writer changed the record
        """


class GradingStore(ABC):
    """
    Durable storage of attempts and progress.

    Any backend failure other than a lost conditional update surfaces as
    ``PersistenceUnavailable``.
    """

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[GradingUnitOfWork]:
        """Open a unit of work; commits on clean exit, discards on error."""

    @abstractmethod
    async def get_progress(
        self,
        user_id: UUID,
        challenge_id: UUID,
    ) -> Optional[ProgressRecord]:
        ...

    @abstractmethod
    async def list_attempts(
        self,
        user_id: UUID,
        challenge_id: Optional[UUID] = None,
        limit: int = 50,
    ) -> List[Attempt]:
        """Attempts of a user, newest first."""

    async def health_check(self) -> dict:
        return {"status": "healthy"}
