"""
SQLAlchemy grading store

Progress writes are conditional updates on the version that was read, so
two processes racing on the same (user, challenge) cannot both win; the
loser gets ``PersistenceConflict`` and the reconciler retries.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, List, Optional
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.exceptions import PersistenceConflict, PersistenceUnavailable
from app.domain.grading.entities import Attempt, ProgressRecord
from app.domain.grading.progress import MergeFn
from app.infrastructure.database import DatabaseManager, UnitOfWork

from .base import GradingStore, GradingUnitOfWork
from .models import AttemptModel, ProgressModel

logger = structlog.get_logger(__name__)


class SqlAlchemyUnitOfWork(UnitOfWork, GradingUnitOfWork):

    async def append_attempt(self, attempt: Attempt) -> None:
        self.session.add(AttemptModel.from_entity(attempt))

    async def upsert_progress(
        self,
        user_id: UUID,
        challenge_id: UUID,
        merge_fn: MergeFn,
    ) -> ProgressRecord:
        result = await self.session.execute(
            select(ProgressModel)
            .where(
                ProgressModel.user_id == user_id,
                ProgressModel.challenge_id == challenge_id,
            )
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        prior = row.to_entity() if row else None
        record = merge_fn(prior)

        if prior is None:
            # A concurrent first insert fails on the primary key
            self.session.add(ProgressModel.from_entity(record))
            await self.flush()
            return record

        updated = await self.session.execute(
            update(ProgressModel)
            .where(
                ProgressModel.user_id == user_id,
                ProgressModel.challenge_id == challenge_id,
                ProgressModel.version == prior.version,
            )
            .values(**ProgressModel.values_from(record))
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount != 1:
            raise PersistenceConflict(
                f"progress {user_id}/{challenge_id} changed since version {prior.version}"
            )
        return record


class SqlAlchemyGradingStore(GradingStore):
    """Grading store on the async SQLAlchemy engine."""

    def __init__(self, db: DatabaseManager):
        self._db = db

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[SqlAlchemyUnitOfWork, None]:
        try:
            async with self._db.session() as session:
                async with SqlAlchemyUnitOfWork(session) as uow:
                    yield uow
                    await uow.commit()
        except IntegrityError as e:
            raise PersistenceConflict("concurrent progress insert") from e
        except SQLAlchemyError as e:
            logger.error("Grading store transaction failed", error=str(e))
            raise PersistenceUnavailable(type(e).__name__) from e

    async def get_progress(
        self,
        user_id: UUID,
        challenge_id: UUID,
    ) -> Optional[ProgressRecord]:
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(ProgressModel).where(
                        ProgressModel.user_id == user_id,
                        ProgressModel.challenge_id == challenge_id,
                    )
                )
                row = result.scalar_one_or_none()
                return row.to_entity() if row else None
        except SQLAlchemyError as e:
            logger.error("Progress lookup failed", error=str(e))
            raise PersistenceUnavailable(type(e).__name__) from e

    async def list_attempts(
        self,
        user_id: UUID,
        challenge_id: Optional[UUID] = None,
        limit: int = 50,
    ) -> List[Attempt]:
        query = select(AttemptModel).where(AttemptModel.user_id == user_id)
        if challenge_id is not None:
            query = query.where(AttemptModel.challenge_id == challenge_id)
        query = query.order_by(AttemptModel.created_at.desc()).limit(limit)

        try:
            async with self._db.session() as session:
                result = await session.execute(query)
                return [row.to_entity() for row in result.scalars()]
        except SQLAlchemyError as e:
            logger.error("Attempt history lookup failed", error=str(e))
            raise PersistenceUnavailable(type(e).__name__) from e

    async def health_check(self) -> dict:
        return await self._db.health_check()
