"""
Sandbox Module

Host side of the untrusted-code execution pipeline. The ``guest`` package
runs inside the child interpreter and never imports from here.
"""

from app.infrastructure.sandbox.executor import ExecutionReport, SandboxExecutor
from app.infrastructure.sandbox.protocol import (
    ExecutionSession,
    Message,
    MessageType,
    correlation_ids,
)
from app.infrastructure.sandbox.security import SandboxLimits

__all__ = [
    "ExecutionReport",
    "SandboxExecutor",
    "ExecutionSession",
    "Message",
    "MessageType",
    "correlation_ids",
    "SandboxLimits",
]
