"""
Codelab Grader - Submission Endpoints
Graded submissions and attempt history
"""

from typing import Annotated, List, Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field

from app.application.grading.service import SubmissionService
from app.domain.grading.entities import Attempt, ClientVerdict, Submission
from app.interfaces.api.v1.auth import CurrentUserId

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_submission_service(request: Request) -> SubmissionService:
    """Get the submission service from app state."""
    return request.app.state.grading


GradingServiceDep = Annotated[SubmissionService, Depends(get_submission_service)]


class ClientVerdictBody(BaseModel):
    """Verdict computed by the learner's client."""
    status: Literal["pass", "fail", "error"]
    score: float = Field(ge=0, le=100)
    passed: List[bool]

    def to_domain(self) -> ClientVerdict:
        return ClientVerdict(status=self.status, score=self.score, passed=tuple(self.passed))


class SubmissionRequest(BaseModel):
    """Markup/style/script submission for a challenge."""
    challenge_id: UUID
    content_version: str | None = None
    markup: str = ""
    style: str = ""
    script: str = ""
    client_verdict: ClientVerdictBody | None = None


class OutcomeResponse(BaseModel):
    index: int
    name: str
    passed: bool
    message: str
    captured_value: str | None = None


class LogEntryResponse(BaseModel):
    level: str
    text: str


class AttemptResponse(BaseModel):
    """Summary of a persisted attempt."""
    id: UUID
    challenge_id: UUID
    content_version: str
    status: str
    score: float
    termination_reason: str
    execution_time_ms: int
    outcomes: List[OutcomeResponse]
    runtime_logs: List[LogEntryResponse]
    created_at: str

    @classmethod
    def from_attempt(cls, attempt: Attempt) -> "AttemptResponse":
        return cls.model_validate(attempt.to_dict())


class AttemptHistoryResponse(BaseModel):
    attempts: List[AttemptResponse]
    count: int


@router.post(
    "",
    response_model=AttemptResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit Solution",
    description="Grade a submission and record it once the server verdict agrees",
)
async def submit(
    body: SubmissionRequest,
    user_id: CurrentUserId,
    service: GradingServiceDep,
) -> AttemptResponse:
    submission = Submission(
        user_id=user_id,
        challenge_id=body.challenge_id,
        markup=body.markup,
        style=body.style,
        script=body.script,
    )
    attempt = await service.submit(
        body.challenge_id,
        user_id,
        submission,
        client_verdict=body.client_verdict.to_domain() if body.client_verdict else None,
        content_version=body.content_version,
    )
    return AttemptResponse.from_attempt(attempt)


@router.get(
    "/history",
    response_model=AttemptHistoryResponse,
    summary="Attempt History",
    description="The caller's attempts, newest first",
)
async def history(
    user_id: CurrentUserId,
    service: GradingServiceDep,
    challenge_id: UUID | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> AttemptHistoryResponse:
    attempts = await service.history(user_id, challenge_id, limit)
    return AttemptHistoryResponse(
        attempts=[AttemptResponse.from_attempt(a) for a in attempts],
        count=len(attempts),
    )
