from .languages import CompileThenRun, Language, LanguageRegistry, NotSupported, RunOnly
from .settings import RunnerSettings
from .execution.coordinator import ExecutionCoordinator
from .execution.store import ExecutionStore
from .execution.types import ExecutionRequest, ExecutionResult, ExecutionStatus

__all__ = [
    "CompileThenRun",
    "ExecutionCoordinator",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionStatus",
    "ExecutionStore",
    "Language",
    "LanguageRegistry",
    "NotSupported",
    "RunOnly",
    "RunnerSettings",
]
