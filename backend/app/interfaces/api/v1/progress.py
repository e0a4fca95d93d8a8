"""
Codelab Grader - Progress Endpoints
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel

from app.interfaces.api.v1.auth import CurrentUserId
from app.interfaces.api.v1.submissions import GradingServiceDep

router = APIRouter()


class ProgressResponse(BaseModel):
    """Per-user-per-challenge progress."""
    challenge_id: UUID
    status: str
    best_score: float
    total_attempts: int
    completed_at: datetime | None = None
    last_attempt_at: datetime | None = None


@router.get(
    "/{challenge_id}",
    response_model=ProgressResponse,
    summary="Challenge Progress",
)
async def get_progress(
    challenge_id: UUID,
    user_id: CurrentUserId,
    service: GradingServiceDep,
) -> ProgressResponse:
    record = await service.get_progress(user_id, challenge_id)
    return ProgressResponse(
        challenge_id=record.challenge_id,
        status=record.status.value,
        best_score=record.best_score,
        total_attempts=record.total_attempts,
        completed_at=record.completed_at,
        last_attempt_at=record.last_attempt_at,
    )
