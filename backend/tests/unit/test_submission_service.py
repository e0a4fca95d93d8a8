"""
Unit tests for the submission pipeline.

Tests:
- Accepted attempts are persisted and folded into progress
- Rejected attempts leave no trace
- Timeouts, size limits and unknown batteries
"""

import asyncio
from uuid import uuid4

import pytest

from app.core.exceptions import (
    BatteryNotFound,
    ExecutionTimeout,
    SubmissionTooLarge,
    ValidationMismatch,
)
from app.domain.grading.entities import (
    AttemptStatus,
    ClientVerdict,
    LogEntry,
    ProgressStatus,
    Submission,
    TerminationReason,
    TestBattery,
    TestCase,
)
from tests.fixtures.grading_fixtures import FakeExecutor


class TestSubmit:
    """Test the submit pipeline."""

    def test_accepted_attempt_is_persisted(
        self, make_service, grading_store, heading_submission, user_id, challenge_id
    ):
        client = FakeExecutor(logs=[LogEntry("log", "rendered Hello")])
        trusted = FakeExecutor(logs=[LogEntry("log", "rendered Hello")])
        service = make_service(client=client, trusted=trusted)

        attempt = asyncio.run(service.submit(challenge_id, user_id, heading_submission))

        assert attempt.status == AttemptStatus.PASS
        assert attempt.runtime_logs[0].text == "rendered Hello"
        assert client.calls == [heading_submission]
        assert trusted.calls == [heading_submission]
        assert grading_store.attempt_count == 1

        progress = asyncio.run(service.get_progress(user_id, challenge_id))
        assert progress.status == ProgressStatus.COMPLETED
        assert progress.best_score == 100.0

    def test_supplied_client_verdict_skips_client_run(
        self, make_service, heading_submission, user_id, challenge_id
    ):
        client = FakeExecutor()
        service = make_service(client=client)
        verdict = ClientVerdict(AttemptStatus.PASS, 100.0, (True, True, True))

        asyncio.run(service.submit(challenge_id, user_id, heading_submission, verdict))

        assert client.calls == []

    def test_mismatch_is_rejected_without_persisting(
        self, make_service, grading_store, heading_submission, user_id, challenge_id
    ):
        service = make_service(trusted=FakeExecutor(passed=[True, False, True]))

        with pytest.raises(ValidationMismatch) as exc_info:
            asyncio.run(service.submit(challenge_id, user_id, heading_submission))

        # The diff stays in the server logs
        assert str(exc_info.value) == "Submission could not be validated"
        assert exc_info.value.detail == "Submission could not be validated"
        assert "indices [1]" in exc_info.value.reason
        assert grading_store.attempt_count == 0
        assert asyncio.run(grading_store.get_progress(user_id, challenge_id)) is None

    def test_forged_verdict_is_rejected(
        self, make_service, grading_store, heading_submission, user_id, challenge_id
    ):
        service = make_service(trusted=FakeExecutor(passed=[False, False, False]))
        forged = ClientVerdict(AttemptStatus.PASS, 100.0, (True, True, True))

        with pytest.raises(ValidationMismatch):
            asyncio.run(service.submit(challenge_id, user_id, heading_submission, forged))
        assert grading_store.attempt_count == 0

    def test_trusted_timeout_is_reported_as_timeout(
        self, make_service, grading_store, heading_submission, user_id, challenge_id
    ):
        trusted = FakeExecutor(
            passed=[True, False, False],
            termination_reason=TerminationReason.TIMEOUT,
        )
        service = make_service(trusted=trusted)

        with pytest.raises(ExecutionTimeout) as exc_info:
            asyncio.run(service.submit(challenge_id, user_id, heading_submission))

        assert exc_info.value.retryable is True
        assert grading_store.attempt_count == 0

    def test_agreeing_timeout_is_persisted_as_error(
        self, make_service, grading_store, heading_submission, user_id, challenge_id
    ):
        def timing_out():
            return FakeExecutor(
                passed=[True, False, False],
                termination_reason=TerminationReason.TIMEOUT,
            )

        service = make_service(client=timing_out(), trusted=timing_out())

        attempt = asyncio.run(service.submit(challenge_id, user_id, heading_submission))

        assert attempt.status == AttemptStatus.ERROR
        assert attempt.termination_reason == TerminationReason.TIMEOUT
        assert grading_store.attempt_count == 1

    def test_oversized_channel_rejected_before_execution(
        self, make_service, user_id, challenge_id
    ):
        client = FakeExecutor()
        service = make_service(client=client, max_bytes={"script": 16})
        submission = Submission(user_id=user_id, challenge_id=challenge_id, script="x = 1\n" * 10)

        with pytest.raises(SubmissionTooLarge) as exc_info:
            asyncio.run(service.submit(challenge_id, user_id, submission))

        assert exc_info.value.channel == "script"
        assert exc_info.value.limit == 16
        assert client.calls == []

    def test_size_limit_counts_utf8_bytes(self, make_service, user_id, challenge_id):
        service = make_service(max_bytes={"markup": 4})
        # Two characters, six bytes
        submission = Submission(user_id=user_id, challenge_id=challenge_id, markup="日本")

        with pytest.raises(SubmissionTooLarge):
            service.check_size(submission)

    def test_unknown_challenge(self, make_service, user_id):
        service = make_service()
        other = uuid4()
        submission = Submission(user_id=user_id, challenge_id=other)

        with pytest.raises(BatteryNotFound):
            asyncio.run(service.submit(other, user_id, submission))

    def test_pinned_content_version(
        self, make_service, battery_provider, heading_submission, user_id, challenge_id
    ):
        battery_provider.register(
            TestBattery(
                challenge_id=challenge_id,
                content_version="v2-draft",
                tests=(TestCase("has heading", "query('h1') is not None"),),
            ),
            publish=False,
        )
        service = make_service()

        attempt = asyncio.run(
            service.submit(challenge_id, user_id, heading_submission, content_version="v2-draft")
        )

        assert attempt.content_version == "v2-draft"
        assert len(attempt.outcomes) == 1
        assert battery_provider.published_version(challenge_id) == "v1"

    def test_submission_must_match_caller(self, make_service, heading_submission, challenge_id):
        service = make_service()
        with pytest.raises(ValueError):
            asyncio.run(service.submit(challenge_id, uuid4(), heading_submission))


class TestQueries:

    def test_progress_defaults_to_not_started(self, make_service, user_id, challenge_id):
        service = make_service()
        record = asyncio.run(service.get_progress(user_id, challenge_id))

        assert record.status == ProgressStatus.NOT_STARTED
        assert record.total_attempts == 0
        assert record.version == 0

    def test_history_filters_by_challenge(
        self, make_service, battery_provider, heading_submission, user_id, challenge_id
    ):
        other = uuid4()
        battery_provider.register(
            TestBattery(
                challenge_id=other,
                content_version="v1",
                tests=(TestCase("anything", "True"),),
            )
        )
        service = make_service()

        async def scenario():
            await service.submit(challenge_id, user_id, heading_submission)
            await service.submit(other, user_id, Submission(user_id=user_id, challenge_id=other))
            return (
                await service.history(user_id),
                await service.history(user_id, challenge_id=other),
            )

        everything, filtered = asyncio.run(scenario())

        assert len(everything) == 2
        assert [a.challenge_id for a in filtered] == [other]
