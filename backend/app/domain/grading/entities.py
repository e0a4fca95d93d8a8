"""
Codelab Grader - Grading Domain Entities
Submissions, test batteries, attempts and per-user progress
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID, uuid4


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class AttemptStatus(str, Enum):
    """Final verdict of one graded attempt."""
    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"


class TerminationReason(str, Enum):
    """Why a sandbox execution session was finalized."""
    COMPLETED = "completed"  # every test reported a result
    TIMEOUT = "timeout"      # wall-clock budget expired
    FAULT = "fault"          # script crashed or the sandbox died


class ProgressStatus(str, Enum):
    """Per-user-per-challenge progress."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AttemptState(str, Enum):
    """Lifecycle of an attempt through the pipeline."""
    SUBMITTED = "submitted"
    EXECUTING = "executing"
    FINALIZED = "finalized"
    REVALIDATING = "revalidating"
    PERSISTED = "persisted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Submission:
    """A learner's markup/style/script payload for one challenge."""
    user_id: UUID
    challenge_id: UUID
    markup: str = ""
    style: str = ""
    script: str = ""
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)

    def channel_sizes(self) -> Dict[str, int]:
        """UTF-8 byte size of each channel."""
        return {
            "markup": len(self.markup.encode("utf-8")),
            "style": len(self.style.encode("utf-8")),
            "script": len(self.script.encode("utf-8")),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "challenge_id": str(self.challenge_id),
            "markup": self.markup,
            "style": self.style,
            "script": self.script,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class TestCase:
    """
    A named assertion evaluated against the sandbox state.

    The assertion is Python source: either an expression whose truthiness
    decides the outcome, or a statement block that passes when it does not
    raise.
    """
    __test__ = False  # not a pytest class

    name: str
    assertion: str
    weight: Optional[float] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Test case name must not be empty")
        if self.weight is not None and self.weight < 0:
            raise ValueError(f"Test case '{self.name}' has a negative weight")

    @property
    def effective_weight(self) -> float:
        return 1.0 if self.weight is None else float(self.weight)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "assertion": self.assertion,
            "weight": self.weight,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "TestCase":
        return TestCase(
            name=data["name"],
            assertion=data["assertion"],
            weight=data.get("weight"),
        )


@dataclass(frozen=True)
class TestBattery:
    """Ordered, immutable list of test cases pinned to a content version."""
    __test__ = False

    challenge_id: UUID
    content_version: str
    tests: Tuple[TestCase, ...] = ()

    def __post_init__(self):
        # Accept any sequence but always store an immutable tuple
        object.__setattr__(self, "tests", tuple(self.tests))

    def __len__(self) -> int:
        return len(self.tests)

    def weights(self) -> List[float]:
        """Resolved weight of each test, index-aligned."""
        return [test.effective_weight for test in self.tests]

    def names(self) -> List[str]:
        return [test.name for test in self.tests]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "challenge_id": str(self.challenge_id),
            "content_version": self.content_version,
            "tests": [test.to_dict() for test in self.tests],
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "TestBattery":
        return TestBattery(
            challenge_id=UUID(str(data["challenge_id"])),
            content_version=str(data["content_version"]),
            tests=tuple(TestCase.from_dict(t) for t in data.get("tests", [])),
        )


@dataclass(frozen=True)
class TestOutcome:
    """Result of one test case, index-aligned with the battery."""
    __test__ = False

    index: int
    name: str
    passed: bool
    message: str = ""
    captured_value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "passed": self.passed,
            "message": self.message,
            "captured_value": self.captured_value,
        }


@dataclass(frozen=True)
class LogEntry:
    """One console line captured from the sandbox."""
    level: str
    text: str

    def to_dict(self) -> Dict[str, str]:
        return {"level": self.level, "text": self.text}


@dataclass(frozen=True)
class ClientVerdict:
    """Verdict reported by an untrusted tier, checked during revalidation."""
    status: AttemptStatus
    score: float
    passed: Tuple[bool, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "status", AttemptStatus(self.status))
        object.__setattr__(self, "passed", tuple(bool(p) for p in self.passed))


@dataclass(frozen=True)
class Attempt:
    """
    One graded evaluation of a submission.

    Attempts are append-only: once created they are never updated.
    """
    submission: Submission
    outcomes: Tuple[TestOutcome, ...]
    status: AttemptStatus
    score: float
    runtime_logs: Tuple[LogEntry, ...] = ()
    execution_time_ms: int = 0
    termination_reason: TerminationReason = TerminationReason.COMPLETED
    content_version: str = ""
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        object.__setattr__(self, "outcomes", tuple(self.outcomes))
        object.__setattr__(self, "runtime_logs", tuple(self.runtime_logs))

    @property
    def user_id(self) -> UUID:
        return self.submission.user_id

    @property
    def challenge_id(self) -> UUID:
        return self.submission.challenge_id

    def verdict(self) -> ClientVerdict:
        """The comparable (status, score, per-test pass/fail) triple."""
        return ClientVerdict(
            status=self.status,
            score=self.score,
            passed=tuple(o.passed for o in self.outcomes),
        )

    def to_dict(self, include_submission: bool = False) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "challenge_id": str(self.challenge_id),
            "submission_id": str(self.submission.id),
            "content_version": self.content_version,
            "status": self.status.value,
            "score": self.score,
            "termination_reason": self.termination_reason.value,
            "execution_time_ms": self.execution_time_ms,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "runtime_logs": [log.to_dict() for log in self.runtime_logs],
            "created_at": self.created_at.isoformat(),
        }
        if include_submission:
            result["submission"] = self.submission.to_dict()
        return result


@dataclass(frozen=True)
class ProgressRecord:
    """Durable per-user-per-challenge summary."""
    user_id: UUID
    challenge_id: UUID
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    best_score: float = 0.0
    total_attempts: int = 0
    completed_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    version: int = 0

    @property
    def key(self) -> Tuple[UUID, UUID]:
        return (self.user_id, self.challenge_id)

    def evolve(self, **changes: Any) -> "ProgressRecord":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": str(self.user_id),
            "challenge_id": str(self.challenge_id),
            "status": self.status.value,
            "best_score": self.best_score,
            "total_attempts": self.total_attempts,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
        }
