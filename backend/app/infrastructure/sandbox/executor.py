"""
Sandbox Executor

Runs one submission against one test battery in a fresh, single-use child
interpreter:
- Isolated interpreter (``-I -B``) in an empty temporary directory
- Scrubbed environment and POSIX rlimits (CPU, memory, files, processes)
- stdin/stdout JSON-lines channel as the only link to the host
- Hard wall-clock timeout; the child is killed when it fires
"""

import asyncio
import json
import sys
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import structlog

from app.core.exceptions import ProtocolError
from app.core.metrics import SANDBOX_EXECUTION_SECONDS, SANDBOX_EXECUTIONS
from app.domain.grading.entities import (
    LogEntry,
    Submission,
    TerminationReason,
    TestBattery,
    TestOutcome,
)

from .protocol import ExecutionSession, Message, correlation_ids
from .security import ISOLATION_FLAGS, SANDBOX_ENVIRONMENT, SandboxLimits, build_preexec

logger = structlog.get_logger(__name__)

# The guest package is put on the child's sys.path on its own; the host
# application package is never importable from there by name.
GUEST_ROOT = Path(__file__).resolve().parent

BOOTSTRAP = (
    "import sys\n"
    f"sys.path.insert(0, {str(GUEST_ROOT)!r})\n"
    "from guest.harness import main\n"
    "sys.exit(main())\n"
)

STREAM_LIMIT = 1024 * 1024  # 1MB per line
STDERR_TAIL = 2000


@dataclass
class ExecutionReport:
    """Everything the host learned from one sandbox execution."""
    correlation_id: int
    outcomes: List[TestOutcome]
    logs: List[LogEntry] = field(default_factory=list)
    duration_ms: int = 0
    termination_reason: TerminationReason = TerminationReason.COMPLETED

    @property
    def timed_out(self) -> bool:
        return self.termination_reason == TerminationReason.TIMEOUT


class SandboxExecutor:
    """
    Executes submissions in isolated child processes.

    Each executor bounds how many children it runs at once; separate
    executor instances (client tier, trusted tier) share nothing.
    """

    def __init__(
        self,
        limits: Optional[SandboxLimits] = None,
        python: Optional[str] = None,
        max_concurrency: int = 4,
        name: str = "sandbox",
    ):
        self.limits = limits or SandboxLimits()
        self.python = python or sys.executable
        self.name = name
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def execute(
        self,
        submission: Submission,
        battery: TestBattery,
        time_budget_ms: Optional[int] = None,
    ) -> ExecutionReport:
        """
        Execute a submission and evaluate the battery in the same sandbox.

        Args:
            submission: Markup/style/script payload
            battery: Test battery to evaluate after the script ran
            time_budget_ms: Override of the configured wall-clock budget

        Returns:
            ExecutionReport with index-aligned outcomes
        """
        limits = self.limits.with_budget(time_budget_ms)
        async with self._semaphore:
            return await self._run(submission, battery, limits)

    async def _run(
        self,
        submission: Submission,
        battery: TestBattery,
        limits: SandboxLimits,
    ) -> ExecutionReport:
        correlation_id = correlation_ids.next()
        session = ExecutionSession(correlation_id, battery.names(), limits.max_log_lines)
        log = logger.bind(
            correlation_id=correlation_id,
            executor=self.name,
            submission_id=str(submission.id),
        )

        if session.finalized:
            # Empty battery: nothing to evaluate
            return self._report(session, 0, log)

        request = self._build_request(correlation_id, submission, battery)
        log.debug("Starting sandbox", limits=limits.to_dict())
        start = time.monotonic()

        with tempfile.TemporaryDirectory(prefix="codelab-sbx-") as work_dir:
            try:
                proc = await asyncio.create_subprocess_exec(
                    self.python,
                    *ISOLATION_FLAGS,
                    "-c",
                    BOOTSTRAP,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=work_dir,
                    env=dict(SANDBOX_ENVIRONMENT),
                    preexec_fn=build_preexec(limits),
                    limit=STREAM_LIMIT,
                )
            except OSError as e:
                log.error("Failed to start sandbox", error=str(e))
                session.fail(f"sandbox could not be started: {e}")
                return self._report(session, self._elapsed_ms(start), log)

            stderr_tail: List[str] = []
            stderr_task = asyncio.create_task(self._drain_stderr(proc, stderr_tail))
            reader_task = asyncio.create_task(
                self._pump(proc, session, stderr_task, stderr_tail, log)
            )

            try:
                # The budget covers delivering the request too
                await asyncio.wait_for(
                    self._exchange(proc, request, session),
                    timeout=limits.time_budget_s,
                )
            except asyncio.TimeoutError:
                log.info("Sandbox time budget expired", budget_ms=limits.time_budget_ms)
                session.expire()
            finally:
                await self._teardown(proc, reader_task, stderr_task)

        return self._report(session, self._elapsed_ms(start), log)

    @staticmethod
    def _build_request(
        correlation_id: int,
        submission: Submission,
        battery: TestBattery,
    ) -> bytes:
        request = {
            "correlationId": correlation_id,
            "markup": submission.markup,
            "style": submission.style,
            "script": submission.script,
            "tests": [
                {"index": index, "name": test.name, "assertion": test.assertion}
                for index, test in enumerate(battery.tests)
            ],
        }
        return json.dumps(request).encode("utf-8") + b"\n"

    async def _exchange(
        self,
        proc: asyncio.subprocess.Process,
        request: bytes,
        session: ExecutionSession,
    ) -> None:
        await self._send_request(proc, request)
        await session.wait()

    @staticmethod
    async def _send_request(proc: asyncio.subprocess.Process, request: bytes) -> None:
        try:
            proc.stdin.write(request)
            await proc.stdin.drain()
            proc.stdin.close()
        except (BrokenPipeError, ConnectionResetError):
            # The child already died; the reader reports it
            pass

    async def _pump(
        self,
        proc: asyncio.subprocess.Process,
        session: ExecutionSession,
        stderr_task: asyncio.Task,
        stderr_tail: List[str],
        log,
    ) -> None:
        """Feed stdout lines into the session until EOF."""
        while True:
            try:
                line = await proc.stdout.readline()
            except ValueError:
                session.fail("sandbox output exceeded the line limit")
                return
            if not line:
                break
            if not line.strip():
                continue
            try:
                message = Message.from_wire(line)
            except ProtocolError as e:
                log.warning("Discarding malformed sandbox message", error=str(e))
                continue
            session.receive(message)

        if not session.finalized:
            returncode = await proc.wait()
            await stderr_task
            detail = "".join(stderr_tail).strip().splitlines()
            message = f"sandbox exited unexpectedly (code {returncode})"
            if detail:
                message = f"{message}: {detail[-1]}"
            if session.ready:
                log.warning("Sandbox exited before finalization", returncode=returncode)
            else:
                # The harness itself never came up
                log.error("Sandbox exited before ready", returncode=returncode, stderr=detail[-1:])
            session.fail(message)

    @staticmethod
    async def _drain_stderr(proc: asyncio.subprocess.Process, tail: List[str]) -> None:
        while True:
            chunk = await proc.stderr.read(4096)
            if not chunk:
                return
            tail.append(chunk.decode("utf-8", errors="replace"))
            # Keep only the last STDERR_TAIL characters
            joined = "".join(tail)[-STDERR_TAIL:]
            tail[:] = [joined]

    @staticmethod
    async def _teardown(
        proc: asyncio.subprocess.Process,
        reader_task: asyncio.Task,
        stderr_task: asyncio.Task,
    ) -> None:
        """Kill the child (single use) and reap the helper tasks."""
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()

        for task in (reader_task, stderr_task):
            if not task.done():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    def _report(self, session: ExecutionSession, duration_ms: int, log) -> ExecutionReport:
        reason = session.termination_reason or TerminationReason.FAULT
        SANDBOX_EXECUTIONS.labels(termination_reason=reason.value).inc()
        SANDBOX_EXECUTION_SECONDS.observe(duration_ms / 1000.0)
        log.info(
            "Sandbox session finalized",
            termination_reason=reason.value,
            duration_ms=duration_ms,
            log_lines=len(session.logs),
            logs_dropped=session.logs_dropped,
            discarded_messages=session.discarded,
        )
        return ExecutionReport(
            correlation_id=session.correlation_id,
            outcomes=session.outcomes(),
            logs=list(session.logs),
            duration_ms=duration_ms,
            termination_reason=reason,
        )
