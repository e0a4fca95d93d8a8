"""
Grading Domain Module

Entities and pure grading rules: scoring and progress merging.
"""

from app.domain.grading.entities import (
    Attempt,
    AttemptState,
    AttemptStatus,
    ClientVerdict,
    LogEntry,
    ProgressRecord,
    ProgressStatus,
    Submission,
    TerminationReason,
    TestBattery,
    TestCase,
    TestOutcome,
)
from app.domain.grading.progress import MergeFn, merge_fn_for, merge_progress
from app.domain.grading.scoring import calculate_score, determine_status, round_score

__all__ = [
    "Attempt",
    "AttemptState",
    "AttemptStatus",
    "ClientVerdict",
    "LogEntry",
    "ProgressRecord",
    "ProgressStatus",
    "Submission",
    "TerminationReason",
    "TestBattery",
    "TestCase",
    "TestOutcome",
    "MergeFn",
    "merge_fn_for",
    "merge_progress",
    "calculate_score",
    "determine_status",
    "round_score",
]
