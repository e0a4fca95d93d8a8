"""
Grading Application Module

Submission pipeline: execution, revalidation and progress reconciliation.
"""

from app.application.grading.reconciler import ProgressReconciler
from app.application.grading.revalidation import (
    RevalidationResult,
    RevalidationService,
    compare_verdicts,
    grade,
)
from app.application.grading.service import SubmissionService, create_submission_service

__all__ = [
    "ProgressReconciler",
    "RevalidationResult",
    "RevalidationService",
    "compare_verdicts",
    "grade",
    "SubmissionService",
    "create_submission_service",
]
