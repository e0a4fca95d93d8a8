"""
Codelab Grader - ORM Models
Tables ``grading_attempts`` and ``challenge_progress``
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.domain.grading.entities import (
    Attempt,
    AttemptStatus,
    LogEntry,
    ProgressRecord,
    ProgressStatus,
    Submission,
    TerminationReason,
    TestOutcome,
    utcnow,
)
from app.infrastructure.database import Base


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AttemptModel(Base):
    """Append-only attempt log; rows are never updated."""

    __tablename__ = "grading_attempts"
    __table_args__ = (
        Index("ix_grading_attempts_user_challenge", "user_id", "challenge_id", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    submission_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    challenge_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    content_version: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    termination_reason: Mapped[str] = mapped_column(String(16), nullable=False)
    execution_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    outcomes: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False)
    runtime_logs: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False)
    markup: Mapped[str] = mapped_column(Text, nullable=False, default="")
    style: Mapped[str] = mapped_column(Text, nullable=False, default="")
    script: Mapped[str] = mapped_column(Text, nullable=False, default="")
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @classmethod
    def from_entity(cls, attempt: Attempt) -> "AttemptModel":
        submission = attempt.submission
        return cls(
            id=attempt.id,
            submission_id=submission.id,
            user_id=submission.user_id,
            challenge_id=submission.challenge_id,
            content_version=attempt.content_version,
            status=attempt.status.value,
            score=attempt.score,
            termination_reason=attempt.termination_reason.value,
            execution_time_ms=attempt.execution_time_ms,
            outcomes=[o.to_dict() for o in attempt.outcomes],
            runtime_logs=[log.to_dict() for log in attempt.runtime_logs],
            markup=submission.markup,
            style=submission.style,
            script=submission.script,
            submitted_at=submission.created_at,
            created_at=attempt.created_at,
        )

    def to_entity(self) -> Attempt:
        submission = Submission(
            id=self.submission_id,
            user_id=self.user_id,
            challenge_id=self.challenge_id,
            markup=self.markup,
            style=self.style,
            script=self.script,
            created_at=_aware(self.submitted_at),
        )
        return Attempt(
            id=self.id,
            submission=submission,
            outcomes=tuple(TestOutcome(**o) for o in self.outcomes),
            status=AttemptStatus(self.status),
            score=self.score,
            runtime_logs=tuple(LogEntry(**log) for log in self.runtime_logs),
            execution_time_ms=self.execution_time_ms,
            termination_reason=TerminationReason(self.termination_reason),
            content_version=self.content_version,
            created_at=_aware(self.created_at),
        )


class ProgressModel(Base):
    """One row per (user, challenge); ``version`` guards concurrent writers."""

    __tablename__ = "challenge_progress"

    user_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    challenge_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    best_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    @classmethod
    def from_entity(cls, record: ProgressRecord) -> "ProgressModel":
        return cls(
            user_id=record.user_id,
            challenge_id=record.challenge_id,
            **cls.values_from(record),
        )

    @staticmethod
    def values_from(record: ProgressRecord) -> Dict[str, Any]:
        """Column values for an insert or a conditional update."""
        return {
            "status": record.status.value,
            "best_score": record.best_score,
            "total_attempts": record.total_attempts,
            "completed_at": record.completed_at,
            "last_attempt_at": record.last_attempt_at,
            "version": record.version,
            "updated_at": utcnow(),
        }

    def to_entity(self) -> ProgressRecord:
        return ProgressRecord(
            user_id=self.user_id,
            challenge_id=self.challenge_id,
            status=ProgressStatus(self.status),
            best_score=self.best_score,
            total_attempts=self.total_attempts,
            completed_at=_aware(self.completed_at),
            last_attempt_at=_aware(self.last_attempt_at),
            version=self.version,
        )
