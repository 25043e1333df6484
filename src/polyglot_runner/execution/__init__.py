from .coordinator import ExecutionCoordinator
from .files import FileStore, LocalFileStore
from .handle import ExecutionHandle
from .process import ProcessRunner
from .store import ExecutionStore
from .types import (
    ExecutionPhase,
    ExecutionRequest,
    ExecutionResult,
    ExecutionStatus,
    ProcessOutcome,
    TerminationReason,
)

__all__ = [
    "ExecutionCoordinator",
    "ExecutionHandle",
    "ExecutionPhase",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionStatus",
    "ExecutionStore",
    "FileStore",
    "LocalFileStore",
    "ProcessOutcome",
    "ProcessRunner",
    "TerminationReason",
]
