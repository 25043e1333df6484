from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class TerminationReason(str, Enum):
    """How one OS process invocation ended."""

    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    LAUNCH_FAILED = "launch_failed"
    CANCELLED = "cancelled"


class ExecutionStatus(str, Enum):
    """Terminal state of one execution, as reported to the caller."""

    COMPLETED = "completed"
    COMPILE_FAILED = "compile_failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    LAUNCH_FAILED = "launch_failed"
    UNSUPPORTED = "unsupported"
    REJECTED = "rejected"


class ExecutionPhase(str, Enum):
    COMPILING = "compiling"
    RUNNING = "running"


@dataclass(slots=True)
class ExecutionRequest:
    """Unit of work submitted to the coordinator.

    `source_content` is written to `source_path` before any process starts;
    leave it as None when the file is already on disk.

    Example:
        ```python
        req = ExecutionRequest(key="file-1", language="python", source_path="/tmp/w/main.py", source_content="print(1)")
        ```
    """

    key: str
    language: str
    source_path: str | Path
    source_content: str | None = None
    working_directory: str | Path | None = None
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        """Reject non-positive timeout overrides.

        Example:
            ```python
            ExecutionRequest(key="k", language="python", source_path="a.py", timeout_seconds=0)  # ValueError
            ```
        """
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

    def resolved_working_directory(self) -> Path:
        """Return the working directory, defaulting to the source file's folder.

        Example:
            ```python
            cwd = req.resolved_working_directory()
            ```
        """
        if self.working_directory is not None:
            return Path(self.working_directory)
        return Path(self.source_path).parent


@dataclass(frozen=True, slots=True)
class ProcessOutcome:
    """Normalized outcome of a single process invocation.

    Example:
        ```python
        out = ProcessOutcome(output="hi\\n", exit_code=0, elapsed_ms=12, reason=TerminationReason.COMPLETED)
        ```
    """

    output: str
    exit_code: int | None
    elapsed_ms: int
    reason: TerminationReason

    @property
    def ok(self) -> bool:
        """Return True when the process completed with exit code 0.

        Example:
            ```python
            if outcome.ok: ...
            ```
        """
        return self.reason is TerminationReason.COMPLETED and self.exit_code == 0


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Caller-visible record of one finished execution.

    Example:
        ```python
        result = ExecutionResult(key="file-1", language="python", output="hi\\n")
        ```
    """

    key: str
    language: str
    output: str = ""
    error: str = ""
    exit_code: int = 0
    execution_time_ms: int = 0
    status: ExecutionStatus = ExecutionStatus.COMPLETED
    timestamp: float = field(default_factory=time.time)

    @property
    def success(self) -> bool:
        """Return True iff every step exited 0 and no failure was recorded.

        Example:
            ```python
            assert ExecutionResult(key="k", language="python").success
            ```
        """
        return self.exit_code == 0 and self.error == ""

    def to_dict(self) -> dict[str, object]:
        """Return a plain mapping suitable for rendering.

        Example:
            ```python
            payload = result.to_dict()
            ```
        """
        return {
            "key": self.key,
            "language": self.language,
            "success": self.success,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "execution_time_ms": self.execution_time_ms,
            "timestamp": self.timestamp,
            "output": self.output,
            "error": self.error,
        }
