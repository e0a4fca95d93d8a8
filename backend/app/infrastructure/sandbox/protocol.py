"""
Host/Sandbox Message Protocol

Wire format (one JSON object per line)::

    {"correlationId": int, "type": "ready"|"log"|"test-result"|"fatal",
     "payload": object}

    log.payload         = {"level": str, "text": str}
    test-result.payload = {"index": int, "name": str, "passed": bool,
                           "message": str, "capturedValue"?: str}
    fatal.payload       = {"message": str}

An ``ExecutionSession`` collects the messages of one execution and decides
when it is finalized: every index resolved, a ``fatal`` message, or the
timeout, whichever comes first.
"""

import asyncio
import itertools
import json
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from app.core.exceptions import ProtocolError
from app.domain.grading.entities import LogEntry, TerminationReason, TestOutcome

logger = structlog.get_logger(__name__)

TIMEOUT_MESSAGE = "timeout"


class MessageType(str, Enum):
    """Message types on the host/sandbox channel."""
    READY = "ready"
    LOG = "log"
    TEST_RESULT = "test-result"
    FATAL = "fatal"


@dataclass(frozen=True)
class Message:
    """A single decoded protocol message."""
    correlation_id: int
    type: MessageType
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_wire(self) -> str:
        """Serialize to a single JSON line (without the trailing newline)."""
        return json.dumps(
            {
                "correlationId": self.correlation_id,
                "type": self.type.value,
                "payload": self.payload,
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_wire(cls, line: str | bytes) -> "Message":
        """
        Decode one line.

        Raises:
            ProtocolError: If the line is not a well-formed message
        """
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"not JSON: {e.msg}") from e

        if not isinstance(data, dict):
            raise ProtocolError("message must be an object")

        correlation_id = data.get("correlationId")
        if not isinstance(correlation_id, int) or isinstance(correlation_id, bool):
            raise ProtocolError("correlationId must be an integer")

        try:
            message_type = MessageType(data.get("type"))
        except ValueError as e:
            raise ProtocolError(f"unknown message type {data.get('type')!r}") from e

        payload = data.get("payload", {})
        if not isinstance(payload, dict):
            raise ProtocolError("payload must be an object")

        if message_type == MessageType.TEST_RESULT:
            index = payload.get("index")
            if not isinstance(index, int) or isinstance(index, bool):
                raise ProtocolError("test-result index must be an integer")
            if not isinstance(payload.get("passed"), bool):
                raise ProtocolError("test-result passed must be a boolean")

        return cls(correlation_id=correlation_id, type=message_type, payload=payload)


class CorrelationIdAllocator:
    """Process-wide monotonic correlation ids."""

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return next(self._counter)


correlation_ids = CorrelationIdAllocator()


class ExecutionSession:
    """
    Collects the messages of one sandbox execution.

    Results are keyed by battery index, so arrival order does not matter.
    The first ``test-result`` for an index wins; anything arriving after
    finalization is discarded.
    """

    def __init__(
        self,
        correlation_id: int,
        test_names: List[str],
        max_log_lines: int = 500,
    ):
        self.correlation_id = correlation_id
        self.test_names = list(test_names)
        self.max_log_lines = max_log_lines
        self.ready = False
        self.logs: List[LogEntry] = []
        self.logs_dropped = 0
        self.termination_reason: Optional[TerminationReason] = None
        self.discarded = 0
        self._results: Dict[int, TestOutcome] = {}
        self._finalized = asyncio.Event()

        # Nothing to wait for with an empty battery
        if not self.test_names:
            self._finalize(TerminationReason.COMPLETED)

    @property
    def finalized(self) -> bool:
        return self._finalized.is_set()

    @property
    def resolved_count(self) -> int:
        return len(self._results)

    def receive(self, message: Message) -> bool:
        """
        Apply one message.

        Returns:
            True if the message changed the session, False if discarded
        """
        if message.correlation_id != self.correlation_id or self.finalized:
            self.discarded += 1
            return False

        if message.type == MessageType.READY:
            self.ready = True
            return True

        if message.type == MessageType.LOG:
            return self._on_log(message.payload)

        if message.type == MessageType.TEST_RESULT:
            return self._on_test_result(message.payload)

        if message.type == MessageType.FATAL:
            self.fail(str(message.payload.get("message", "fatal error")))
            return True

        return False

    def _on_log(self, payload: Dict[str, Any]) -> bool:
        if len(self.logs) >= self.max_log_lines:
            self.logs_dropped += 1
            return False
        self.logs.append(LogEntry(
            level=str(payload.get("level", "log")),
            text=str(payload.get("text", "")),
        ))
        return True

    def _on_test_result(self, payload: Dict[str, Any]) -> bool:
        index = payload["index"]
        if not 0 <= index < len(self.test_names) or index in self._results:
            self.discarded += 1
            return False

        captured = payload.get("capturedValue")
        self._results[index] = TestOutcome(
            index=index,
            name=self.test_names[index],
            passed=bool(payload["passed"]),
            message=str(payload.get("message", "")),
            captured_value=str(captured) if captured is not None else None,
        )
        if len(self._results) == len(self.test_names):
            self._finalize(TerminationReason.COMPLETED)
        return True

    def fail(self, message: str) -> None:
        """Error every unresolved index and finalize as a fault."""
        if self.finalized:
            return
        self._resolve_remaining(message)
        self._finalize(TerminationReason.FAULT)

    def expire(self) -> None:
        """Mark unresolved indices as timed out and finalize."""
        if self.finalized:
            return
        self._resolve_remaining(TIMEOUT_MESSAGE)
        self._finalize(TerminationReason.TIMEOUT)

    def _resolve_remaining(self, message: str) -> None:
        for index, name in enumerate(self.test_names):
            if index not in self._results:
                self._results[index] = TestOutcome(
                    index=index,
                    name=name,
                    passed=False,
                    message=message,
                )

    def _finalize(self, reason: TerminationReason) -> None:
        self.termination_reason = reason
        self._finalized.set()

    async def wait(self) -> None:
        """Suspend until the session is finalized."""
        await self._finalized.wait()

    def outcomes(self) -> List[TestOutcome]:
        """Outcomes index-aligned with the battery (requires finalization)."""
        if not self.finalized:
            raise RuntimeError("session is not finalized")
        return [self._results[i] for i in range(len(self.test_names))]
