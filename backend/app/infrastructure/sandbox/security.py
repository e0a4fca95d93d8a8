"""
Sandbox Resource Limits

Provides the bounds applied to every sandbox child process:
- Wall-clock budget enforced by the host
- POSIX rlimits (CPU seconds, address space, file size, processes, files)
- A scrubbed environment with no host secrets
"""

import math
import platform
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from app.core.config import Settings

# Interpreter flags: isolated mode (no env vars, user site or script dir)
# and no bytecode writes
ISOLATION_FLAGS = ("-I", "-B")

SANDBOX_ENVIRONMENT = {
    "PATH": "/usr/bin:/bin",
    "LANG": "C.UTF-8",
    "LC_ALL": "C.UTF-8",
}


@dataclass(frozen=True)
class SandboxLimits:
    """Resource bounds for one sandbox execution."""
    time_budget_ms: int = 5000
    memory_limit_mb: int = 256
    max_file_size_bytes: int = 0
    max_open_files: int = 64
    max_processes: int = 8
    max_log_lines: int = 500

    @property
    def time_budget_s(self) -> float:
        return self.time_budget_ms / 1000.0

    @property
    def cpu_seconds(self) -> int:
        # CPU time can never exceed wall time; the margin lets the host's
        # wall-clock timeout fire first
        return math.ceil(self.time_budget_s) + 1

    @classmethod
    def from_settings(cls, settings: Settings) -> "SandboxLimits":
        return cls(
            time_budget_ms=settings.sandbox_time_budget_ms,
            memory_limit_mb=settings.sandbox_memory_limit_mb,
            max_log_lines=settings.max_log_lines,
        )

    def with_budget(self, time_budget_ms: Optional[int]) -> "SandboxLimits":
        if time_budget_ms is None or time_budget_ms == self.time_budget_ms:
            return self
        return SandboxLimits(
            time_budget_ms=time_budget_ms,
            memory_limit_mb=self.memory_limit_mb,
            max_file_size_bytes=self.max_file_size_bytes,
            max_open_files=self.max_open_files,
            max_processes=self.max_processes,
            max_log_lines=self.max_log_lines,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time_budget_ms": self.time_budget_ms,
            "memory_limit_mb": self.memory_limit_mb,
            "cpu_seconds": self.cpu_seconds,
            "max_file_size_bytes": self.max_file_size_bytes,
            "max_open_files": self.max_open_files,
            "max_processes": self.max_processes,
            "max_log_lines": self.max_log_lines,
        }


def build_preexec(limits: SandboxLimits) -> Optional[Callable[[], None]]:
    """
    Build the ``preexec_fn`` that applies rlimits in the forked child.

    Returns None on platforms without the ``resource`` module, where only
    the host's wall-clock timeout applies.
    """
    if platform.system() == "Windows":
        return None

    def set_limits() -> None:
        import resource

        def _limit(kind: int, value: int) -> None:
            try:
                resource.setrlimit(kind, (value, value))
            except (ValueError, OSError):
                # Not permitted on this host (e.g. above the hard limit)
                pass

        _limit(resource.RLIMIT_CPU, limits.cpu_seconds)
        _limit(resource.RLIMIT_AS, limits.memory_limit_mb * 1024 * 1024)
        _limit(resource.RLIMIT_FSIZE, limits.max_file_size_bytes)
        _limit(resource.RLIMIT_NOFILE, limits.max_open_files)
        _limit(resource.RLIMIT_CORE, 0)
        if hasattr(resource, "RLIMIT_NPROC"):
            _limit(resource.RLIMIT_NPROC, limits.max_processes)

    return set_limits
