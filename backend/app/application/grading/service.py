"""
Codelab Grader - Submission Service
Entry point of the grading pipeline
"""

from typing import List, Optional
from uuid import UUID

import structlog

from app.core.config import Settings
from app.core.exceptions import ExecutionTimeout, SubmissionTooLarge, ValidationMismatch
from app.core.metrics import GRADING_ATTEMPTS
from app.domain.grading.entities import (
    Attempt,
    AttemptState,
    ClientVerdict,
    ProgressRecord,
    Submission,
    TerminationReason,
)
from app.infrastructure.content import BatteryProvider
from app.infrastructure.persistence.base import GradingStore
from app.infrastructure.sandbox.executor import SandboxExecutor
from app.infrastructure.sandbox.security import SandboxLimits

from .reconciler import ProgressReconciler
from .revalidation import Executor, RevalidationService, grade

logger = structlog.get_logger(__name__)


class SubmissionService:
    """
    Orchestrates one submission end to end:

    submitted -> executing -> finalized -> revalidating -> persisted | rejected

    Only attempts whose server-side verdict matches the provisional one are
    persisted; rejected attempts leave no trace in storage.
    """

    def __init__(
        self,
        provider: BatteryProvider,
        store: GradingStore,
        client_executor: Executor,
        revalidation: RevalidationService,
        reconciler: ProgressReconciler,
        max_bytes: Optional[dict] = None,
    ):
        self._provider = provider
        self._store = store
        self._client_executor = client_executor
        self._revalidation = revalidation
        self._reconciler = reconciler
        self._max_bytes = max_bytes or {}

    def check_size(self, submission: Submission) -> None:
        """
        Raises:
            SubmissionTooLarge: If any channel exceeds its byte bound
        """
        for channel, size in submission.channel_sizes().items():
            limit = self._max_bytes.get(channel)
            if limit is not None and size > limit:
                raise SubmissionTooLarge(channel, size, limit)

    async def submit(
        self,
        challenge_id: UUID,
        user_id: UUID,
        submission: Submission,
        client_verdict: Optional[ClientVerdict] = None,
        content_version: Optional[str] = None,
    ) -> Attempt:
        """
        Grade a submission and persist it once the server agrees.

        Args:
            challenge_id: Challenge being attempted
            user_id: Resolved identity of the submitter
            submission: The markup/style/script payload
            client_verdict: Verdict computed by an untrusted tier; computed
                            here on the client-tier executor when omitted
            content_version: Battery version; None means currently published

        Returns:
            The persisted (server-computed) attempt

        Raises:
            SubmissionTooLarge, BatteryNotFound, ValidationMismatch,
            ExecutionTimeout, PersistenceConflict, PersistenceUnavailable
        """
        if (submission.user_id, submission.challenge_id) != (user_id, challenge_id):
            raise ValueError("Submission does not belong to this user and challenge")

        log = logger.bind(
            submission_id=str(submission.id),
            user_id=str(user_id),
            challenge_id=str(challenge_id),
        )
        log.info("Attempt state", state=AttemptState.SUBMITTED.value)

        self.check_size(submission)
        battery = await self._provider.get_battery(challenge_id, content_version)

        if client_verdict is None:
            log.info("Attempt state", state=AttemptState.EXECUTING.value)
            provisional = await grade(self._client_executor, submission, battery)
            client_verdict = provisional.verdict()
            log.info(
                "Attempt state",
                state=AttemptState.FINALIZED.value,
                status=provisional.status.value,
                score=provisional.score,
                termination_reason=provisional.termination_reason.value,
            )

        log.info("Attempt state", state=AttemptState.REVALIDATING.value)
        result = await self._revalidation.revalidate(submission, battery, client_verdict)
        attempt = result.attempt

        if not result.accepted:
            GRADING_ATTEMPTS.labels(outcome="rejected").inc()
            # Kept for abuse monitoring; never shown to the submitter
            log.warning(
                "attempt_rejected",
                state=AttemptState.REJECTED.value,
                reason=result.reason,
                client_status=client_verdict.status.value,
                client_score=client_verdict.score,
                server_status=attempt.status.value,
                server_score=attempt.score,
                termination_reason=attempt.termination_reason.value,
            )
            if attempt.termination_reason == TerminationReason.TIMEOUT:
                raise ExecutionTimeout()
            raise ValidationMismatch(result.reason)

        progress = await self._reconciler.reconcile(user_id, challenge_id, attempt)
        GRADING_ATTEMPTS.labels(outcome="persisted").inc()
        log.info(
            "Attempt state",
            state=AttemptState.PERSISTED.value,
            attempt_id=str(attempt.id),
            status=attempt.status.value,
            score=attempt.score,
            best_score=progress.best_score,
            progress_status=progress.status.value,
        )
        return attempt

    async def get_progress(self, user_id: UUID, challenge_id: UUID) -> ProgressRecord:
        """Progress of a user on a challenge; a not-started record when absent."""
        record = await self._store.get_progress(user_id, challenge_id)
        return record or ProgressRecord(user_id=user_id, challenge_id=challenge_id)

    async def history(
        self,
        user_id: UUID,
        challenge_id: Optional[UUID] = None,
        limit: int = 50,
    ) -> List[Attempt]:
        return await self._store.list_attempts(user_id, challenge_id, limit)


def create_submission_service(
    settings: Settings,
    provider: BatteryProvider,
    store: GradingStore,
) -> SubmissionService:
    """Wire the pipeline with a client-tier and a trusted executor."""
    limits = SandboxLimits.from_settings(settings)

    client_executor = SandboxExecutor(
        limits=limits,
        python=settings.sandbox_python,
        max_concurrency=settings.sandbox_max_concurrency,
        name="client",
    )
    trusted_executor = SandboxExecutor(
        limits=limits,
        python=settings.sandbox_python,
        max_concurrency=settings.sandbox_max_concurrency,
        name="trusted",
    )

    return SubmissionService(
        provider=provider,
        store=store,
        client_executor=client_executor,
        revalidation=RevalidationService(trusted_executor, settings.score_tolerance),
        reconciler=ProgressReconciler(
            store,
            max_retries=settings.persistence_max_retries,
            retry_base_ms=settings.persistence_retry_base_ms,
        ),
        max_bytes={
            "markup": settings.max_markup_bytes,
            "style": settings.max_style_bytes,
            "script": settings.max_script_bytes,
        },
    )
