"""
Guest side of the host/sandbox message channel.

Messages are written to the original stdout as one JSON object per line:
``{"correlationId": int, "type": str, "payload": object}``.
"""

import json
from typing import Any, Callable, Dict, Optional, TextIO

READY = "ready"
LOG = "log"
TEST_RESULT = "test-result"
FATAL = "fatal"

MAX_TEXT_LENGTH = 2000
MAX_LOG_MESSAGES = 1000


def _clip(text: str, limit: int = MAX_TEXT_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "...[truncated]"


class Channel:
    """Writes correlation-stamped messages to the host."""

    def __init__(self, stream: TextIO, correlation_id: int):
        self._stream = stream
        self.correlation_id = correlation_id
        self._log_count = 0
        self._log_dropped = False

    def send(self, message_type: str, payload: Dict[str, Any]) -> None:
        line = json.dumps(
            {
                "correlationId": self.correlation_id,
                "type": message_type,
                "payload": payload,
            },
            separators=(",", ":"),
            default=str,
        )
        self._stream.write(line + "\n")
        self._stream.flush()

    def ready(self) -> None:
        self.send(READY, {})

    def log(self, level: str, text: str) -> None:
        if self._log_count >= MAX_LOG_MESSAGES:
            if not self._log_dropped:
                self._log_dropped = True
                self.send(LOG, {"level": "warn", "text": "console output limit reached"})
            return
        self._log_count += 1
        self.send(LOG, {"level": level, "text": _clip(text)})

    def test_result(
        self,
        index: int,
        name: str,
        passed: bool,
        message: str,
        captured_value: Optional[str] = None,
    ) -> None:
        payload: Dict[str, Any] = {
            "index": index,
            "name": name,
            "passed": bool(passed),
            "message": _clip(message),
        }
        if captured_value is not None:
            payload["capturedValue"] = _clip(captured_value, 200)
        self.send(TEST_RESULT, payload)

    def fatal(self, message: str) -> None:
        self.send(FATAL, {"message": _clip(message)})


LogSink = Callable[[str, str], None]


def log_sink(channel: Channel) -> LogSink:
    """Log-only view of the channel handed to submission-visible objects."""
    def emit(level: str, text: str) -> None:
        channel.log(level, text)
    return emit


class Console:
    """The ``console`` object submissions and assertions log through."""

    __slots__ = ("_emit_line",)

    def __init__(self, emit: LogSink):
        self._emit_line = emit

    def _emit(self, level: str, args: tuple) -> None:
        self._emit_line(level, " ".join(str(arg) for arg in args))

    def log(self, *args: Any) -> None:
        self._emit("log", args)

    def info(self, *args: Any) -> None:
        self._emit("info", args)

    def warn(self, *args: Any) -> None:
        self._emit("warn", args)

    warning = warn

    def error(self, *args: Any) -> None:
        self._emit("error", args)

    def debug(self, *args: Any) -> None:
        self._emit("debug", args)

    def print(self, *args: Any, sep: str = " ", end: str = "\n", **_: Any) -> None:
        """Replacement for the ``print`` builtin."""
        text = sep.join(str(arg) for arg in args) + (end or "")
        self._emit_line("log", text.rstrip("\n"))


class ConsoleStream:
    """File-like object that turns stray stdout/stderr writes into log lines."""

    def __init__(self, emit: LogSink, level: str):
        self._emit_line = emit
        self._level = level
        self._buffer = ""

    def write(self, text: str) -> int:
        self._buffer += text
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            self._emit_line(self._level, line)
        return len(text)

    def flush(self) -> None:
        if self._buffer:
            self._emit_line(self._level, self._buffer)
            self._buffer = ""
