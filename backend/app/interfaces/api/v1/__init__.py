"""
Codelab Grader - API v1 Router
Aggregates all API endpoints
"""

from fastapi import APIRouter

from app.interfaces.api.v1.health import router as health_router
from app.interfaces.api.v1.progress import router as progress_router
from app.interfaces.api.v1.submissions import router as submissions_router

api_router = APIRouter()

# Health check endpoints
api_router.include_router(
    health_router,
    prefix="/health",
    tags=["Health"],
)

# Submission endpoints
api_router.include_router(
    submissions_router,
    prefix="/submissions",
    tags=["Submissions"],
)

# Progress endpoints
api_router.include_router(
    progress_router,
    prefix="/progress",
    tags=["Progress"],
)
