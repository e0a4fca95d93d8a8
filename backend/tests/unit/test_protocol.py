"""
Unit tests for the host/sandbox message protocol.

Tests:
- Wire decoding and validation
- Session finalization (all results, fatal, timeout)
- Discarding of late, foreign, duplicate and out-of-range messages
"""

import asyncio
import io

import pytest

from app.core.exceptions import ProtocolError
from app.domain.grading.entities import TerminationReason
from app.infrastructure.sandbox.guest.channel import Channel
from app.infrastructure.sandbox.protocol import (
    CorrelationIdAllocator,
    ExecutionSession,
    Message,
    MessageType,
)


def result(correlation_id: int, index: int, passed: bool = True) -> Message:
    return Message(
        correlation_id,
        MessageType.TEST_RESULT,
        {"index": index, "name": f"t{index}", "passed": passed, "message": "ok"},
    )


class TestMessageDecoding:
    """Test wire decoding."""

    def test_round_trip(self):
        message = result(7, 0)
        decoded = Message.from_wire(message.to_wire())
        assert decoded == message

    def test_guest_channel_output_decodes(self):
        stream = io.StringIO()
        channel = Channel(stream, 42)
        channel.ready()
        channel.log("warn", "careful")
        channel.test_result(0, "t0", False, "nope", captured_value="'x'")
        channel.fatal("boom")

        messages = [Message.from_wire(line) for line in stream.getvalue().splitlines()]

        assert [m.type for m in messages] == [
            MessageType.READY,
            MessageType.LOG,
            MessageType.TEST_RESULT,
            MessageType.FATAL,
        ]
        assert all(m.correlation_id == 42 for m in messages)
        assert messages[2].payload["capturedValue"] == "'x'"

    @pytest.mark.parametrize("line", [
        "not json",
        "[1, 2]",
        '{"correlationId": "1", "type": "ready", "payload": {}}',
        '{"correlationId": 1, "type": "explode", "payload": {}}',
        '{"correlationId": 1, "type": "log", "payload": []}',
        '{"correlationId": 1, "type": "test-result", "payload": {"index": "0", "passed": true}}',
        '{"correlationId": 1, "type": "test-result", "payload": {"index": 0, "passed": "yes"}}',
    ])
    def test_malformed_lines_rejected(self, line):
        with pytest.raises(ProtocolError):
            Message.from_wire(line)


class TestCorrelationIds:

    def test_monotonic(self):
        allocator = CorrelationIdAllocator()
        ids = [allocator.next() for _ in range(5)]
        assert ids == sorted(ids)
        assert len(set(ids)) == 5


class TestExecutionSession:
    """Test finalization rules."""

    def setup_method(self):
        self.session = ExecutionSession(1, ["a", "b", "c"])

    def test_finalizes_when_all_indices_resolved(self):
        for index in (2, 0, 1):
            assert not self.session.finalized
            self.session.receive(result(1, index))

        assert self.session.finalized
        assert self.session.termination_reason == TerminationReason.COMPLETED
        assert [o.index for o in self.session.outcomes()] == [0, 1, 2]

    def test_first_result_wins(self):
        self.session.receive(result(1, 0, passed=True))
        accepted = self.session.receive(result(1, 0, passed=False))

        assert accepted is False
        self.session.fail("stop")
        assert self.session.outcomes()[0].passed is True

    def test_foreign_correlation_discarded(self):
        assert self.session.receive(result(99, 0)) is False
        assert self.session.resolved_count == 0
        assert self.session.discarded == 1

    def test_out_of_range_index_discarded(self):
        assert self.session.receive(result(1, 3)) is False
        assert self.session.receive(result(1, -1)) is False
        assert self.session.resolved_count == 0

    def test_fatal_errors_unresolved_indices(self):
        self.session.receive(result(1, 0))
        self.session.receive(Message(1, MessageType.FATAL, {"message": "ValueError: boom"}))

        outcomes = self.session.outcomes()
        assert self.session.termination_reason == TerminationReason.FAULT
        assert outcomes[0].passed is True
        assert [o.message for o in outcomes[1:]] == ["ValueError: boom", "ValueError: boom"]
        assert not any(o.passed for o in outcomes[1:])

    def test_expire_marks_timeout(self):
        self.session.receive(result(1, 1))
        self.session.expire()

        outcomes = self.session.outcomes()
        assert self.session.termination_reason == TerminationReason.TIMEOUT
        assert outcomes[1].passed is True
        assert outcomes[0].message == "timeout"
        assert outcomes[2].message == "timeout"

    def test_messages_after_finalization_discarded(self):
        self.session.expire()
        assert self.session.receive(result(1, 0)) is False
        assert self.session.outcomes()[0].message == "timeout"

    def test_logs_kept_in_order_and_capped(self):
        session = ExecutionSession(1, ["a"], max_log_lines=2)
        for text in ("one", "two", "three"):
            session.receive(Message(1, MessageType.LOG, {"level": "log", "text": text}))

        assert [entry.text for entry in session.logs] == ["one", "two"]
        assert session.logs_dropped == 1

    def test_outcomes_require_finalization(self):
        with pytest.raises(RuntimeError):
            self.session.outcomes()

    def test_empty_battery_finalizes_immediately(self):
        session = ExecutionSession(1, [])
        assert session.finalized
        assert session.outcomes() == []

    def test_wait_returns_after_finalization(self):
        async def scenario():
            session = ExecutionSession(1, ["a"])
            waiter = asyncio.create_task(session.wait())
            await asyncio.sleep(0)
            assert not waiter.done()
            session.receive(result(1, 0))
            await asyncio.wait_for(waiter, timeout=1)
            return session

        session = asyncio.run(scenario())
        assert session.termination_reason == TerminationReason.COMPLETED
