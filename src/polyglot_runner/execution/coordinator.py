from __future__ import annotations

import hashlib
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable

from ..languages import CompileThenRun, LanguageRegistry, NotSupported
from ..settings import RunnerSettings
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

logger = logging.getLogger(__name__)

ResultCallback = Callable[[ExecutionResult], None]


def _key_slug(key: str) -> str:
    """Return a filesystem-safe, collision-resistant directory name for a key.

    Example:
        ```python
        name = _key_slug("project-1/main.c")
        ```
    """
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


def _seconds(value: float) -> str:
    """Format a timeout for error messages.

    Example:
        ```python
        assert _seconds(60.0) == "60"
        ```
    """
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def _first_timeout(*candidates: float | None) -> float:
    """Return the first configured timeout, most specific first.

    Example:
        ```python
        assert _first_timeout(None, 5, 60) == 5
        ```
    """
    for candidate in candidates:
        if candidate is not None:
            return candidate
    raise ValueError("no timeout configured")


class ExecutionCoordinator:
    """Drive language pipelines for execution requests on a worker pool.

    A second `execute` for a key that is still running follows
    `RunnerSettings.overlap_policy`: `supersede` cancels the running
    execution first, `reject` answers the new request with a `rejected`
    result and leaves the running one alone.

    Example:
        ```python
        with ExecutionCoordinator() as coordinator:
            future = coordinator.execute(
                ExecutionRequest(key="f1", language="python", source_path="/tmp/w/main.py", source_content="print('hi')")
            )
            print(future.result().output)
        ```
    """

    def __init__(
        self,
        *,
        settings: RunnerSettings | None = None,
        registry: LanguageRegistry | None = None,
        store: ExecutionStore | None = None,
        runner: ProcessRunner | None = None,
        file_store: FileStore | None = None,
    ) -> None:
        """Wire collaborators, defaulting each one from settings.

        Example:
            ```python
            coordinator = ExecutionCoordinator(settings=RunnerSettings(overlap_policy="reject"))
            ```
        """
        self._settings = settings or RunnerSettings()
        if registry is None:
            if self._settings.languages_file:
                registry = LanguageRegistry.from_file(self._settings.languages_file)
            else:
                registry = LanguageRegistry.default()
        self._registry = registry
        self._store = store or ExecutionStore()
        self._runner = runner or ProcessRunner(
            max_output_bytes=self._settings.max_output_bytes,
            kill_grace_seconds=self._settings.kill_grace_seconds,
        )
        self._files: FileStore = file_store or LocalFileStore()
        self._executor = ThreadPoolExecutor(
            max_workers=self._settings.max_workers,
            thread_name_prefix="polyglot-exec",
        )
        self._closed = False

    @property
    def registry(self) -> LanguageRegistry:
        """Return the language registry in use.

        Example:
            ```python
            langs = coordinator.registry.languages()
            ```
        """
        return self._registry

    @property
    def settings(self) -> RunnerSettings:
        """Return the effective settings.

        Example:
            ```python
            timeout = coordinator.settings.run_timeout_seconds
            ```
        """
        return self._settings

    def execute(
        self,
        request: ExecutionRequest,
        on_result: ResultCallback | None = None,
    ) -> Future[ExecutionResult]:
        """Start an execution without blocking and return its future.

        `on_result` is called exactly once with the final result, from the
        worker thread (or the caller's thread for a rejected request).

        Example:
            ```python
            future = coordinator.execute(request, on_result=lambda r: print(r.success))
            ```
        """
        if self._closed:
            raise RuntimeError("ExecutionCoordinator is closed")

        supersede = self._settings.overlap_policy == "supersede"
        handle, previous = self._store.claim(request.key, supersede=supersede)
        if handle is None:
            logger.info("Rejected execution for key %s: already running", request.key)
            result = ExecutionResult(
                key=request.key,
                language=self._language_id(request.language),
                error=f"Execution already running for {request.key}",
                status=ExecutionStatus.REJECTED,
            )
            future: Future[ExecutionResult] = Future()
            future.set_result(result)
            self._deliver(on_result, result)
            return future

        if previous is not None:
            logger.info("Superseding execution #%s for key %s", previous.sequence, request.key)
            previous.cancel()
        logger.debug("Queued execution #%s for key %s (%s)", handle.sequence, request.key, request.language)
        try:
            return self._executor.submit(self._work, request, handle, on_result)
        except RuntimeError:
            # Executor shut down underneath us; the claimed key must not stay busy.
            self._store.release(handle)
            raise

    def stop(self, key: str) -> bool:
        """Cancel the live execution of `key`; returns False when none exists.

        Cancellation is best-effort: the process is killed, the handle is
        cleared at once, and the worker records a `cancelled` result when it
        observes the kill.

        Example:
            ```python
            coordinator.stop("f1")
            ```
        """
        handle = self._store.live_handle(key)
        if handle is None:
            return False
        handle.cancel()
        self._store.release(handle)
        logger.info("Stopped execution #%s for key %s", handle.sequence, key)
        return True

    def is_executing(self, key: str) -> bool:
        """Return True while a live handle is registered for `key`.

        Example:
            ```python
            busy = coordinator.is_executing("f1")
            ```
        """
        return self._store.live_handle(key) is not None

    def execution_phase(self, key: str) -> ExecutionPhase | None:
        """Return the pipeline step the live execution of `key` is in.

        Example:
            ```python
            phase = coordinator.execution_phase("f1")
            ```
        """
        handle = self._store.live_handle(key)
        return handle.phase if handle is not None else None

    def get_execution_result(self, key: str) -> ExecutionResult | None:
        """Return the most recent finished result for `key`.

        Example:
            ```python
            result = coordinator.get_execution_result("f1")
            ```
        """
        return self._store.get_result(key)

    def get_last_result(self, key: str) -> ExecutionResult | None:
        """Alias of `get_execution_result` used by editor front-ends.

        Example:
            ```python
            result = coordinator.get_last_result("f1")
            ```
        """
        return self.get_execution_result(key)

    def close(self, wait: bool = True) -> None:
        """Cancel every live execution and shut the worker pool down.

        Example:
            ```python
            coordinator.close()
            ```
        """
        if self._closed:
            return
        self._closed = True
        for handle in self._store.live_handles():
            handle.cancel()
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "ExecutionCoordinator":
        """Return self for use as a context manager.

        Example:
            ```python
            with ExecutionCoordinator() as coordinator: ...
            ```
        """
        return self

    def __exit__(self, *exc_info: object) -> None:
        """Close the coordinator on context exit.

        Example:
            ```python
            coordinator.__exit__(None, None, None)
            ```
        """
        self.close()

    def _work(
        self,
        request: ExecutionRequest,
        handle: ExecutionHandle,
        on_result: ResultCallback | None,
    ) -> ExecutionResult:
        """Worker body: run the pipeline, record and deliver the result.

        Example:
            ```python
            result = coordinator._work(request, handle, None)
            ```
        """
        try:
            result = self._run_pipeline(request, handle)
        except Exception as exc:
            logger.exception("Execution #%s for key %s failed unexpectedly", handle.sequence, request.key)
            result = self._result(
                request,
                error=f"Execution failed: {exc}",
                status=ExecutionStatus.LAUNCH_FAILED,
            )
        self._store.complete(handle, result)
        logger.info(
            "Execution #%s for key %s finished: status=%s success=%s time=%sms",
            handle.sequence,
            request.key,
            result.status.value,
            result.success,
            result.execution_time_ms,
        )
        self._deliver(on_result, result)
        return result

    def _deliver(self, on_result: ResultCallback | None, result: ExecutionResult) -> None:
        """Invoke the caller's callback, logging instead of raising on failure.

        Example:
            ```python
            coordinator._deliver(print, result)
            ```
        """
        if on_result is None:
            return
        try:
            on_result(result)
        except Exception:
            logger.exception("Result callback failed for key %s", result.key)

    def _run_pipeline(self, request: ExecutionRequest, handle: ExecutionHandle) -> ExecutionResult:
        """Write the source, then compile (when needed) and run it.

        Example:
            ```python
            result = coordinator._run_pipeline(request, handle)
            ```
        """
        pipeline = self._registry.pipeline_for(request.language)
        if isinstance(pipeline, NotSupported):
            return self._result(request, error=pipeline.message, status=ExecutionStatus.UNSUPPORTED)

        source = Path(request.source_path)
        cwd = request.resolved_working_directory()
        build_dir = Path(self._settings.build_dir) / _key_slug(request.key)
        if request.source_content is not None:
            try:
                self._files.write_text(source, request.source_content)
            except OSError as exc:
                logger.warning("Could not write %s: %s", source, exc)
                return self._result(
                    request,
                    error=f"Execution error: {exc}",
                    status=ExecutionStatus.LAUNCH_FAILED,
                )

        elapsed_ms = 0
        if isinstance(pipeline, CompileThenRun):
            if not handle.enter_phase(ExecutionPhase.COMPILING):
                return self._cancelled(request, "", elapsed_ms)
            try:
                build_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                return self._result(
                    request,
                    error=f"Execution error: {exc}",
                    status=ExecutionStatus.LAUNCH_FAILED,
                )
            compile_timeout = _first_timeout(pipeline.compile_timeout_seconds, self._settings.compile_timeout_seconds)
            compiled = self._runner.run(
                pipeline.compile_argv(source, build_dir),
                cwd,
                compile_timeout,
                handle=handle,
            )
            elapsed_ms += compiled.elapsed_ms
            if compiled.reason is TerminationReason.CANCELLED:
                return self._cancelled(request, compiled.output, elapsed_ms)
            if not compiled.ok:
                return self._compile_failed(request, compiled, compile_timeout, elapsed_ms)

        if not handle.enter_phase(ExecutionPhase.RUNNING):
            return self._cancelled(request, "", elapsed_ms)
        run_timeout = _first_timeout(
            request.timeout_seconds,
            pipeline.run_timeout_seconds,
            self._settings.run_timeout_seconds,
        )
        outcome = self._runner.run(pipeline.run_argv(source, build_dir), cwd, run_timeout, handle=handle)
        elapsed_ms += outcome.elapsed_ms

        if outcome.reason is TerminationReason.COMPLETED:
            return self._result(
                request,
                output=outcome.output,
                exit_code=outcome.exit_code or 0,
                elapsed_ms=elapsed_ms,
                status=ExecutionStatus.COMPLETED,
            )
        if outcome.reason is TerminationReason.TIMED_OUT:
            return self._result(
                request,
                output=outcome.output,
                error=f"Execution timed out after {_seconds(run_timeout)} seconds",
                elapsed_ms=elapsed_ms,
                status=ExecutionStatus.TIMED_OUT,
            )
        if outcome.reason is TerminationReason.CANCELLED:
            return self._cancelled(request, outcome.output, elapsed_ms)
        return self._result(
            request,
            error=f"Execution error: {outcome.output}",
            elapsed_ms=elapsed_ms,
            status=ExecutionStatus.LAUNCH_FAILED,
        )

    def _compile_failed(
        self,
        request: ExecutionRequest,
        outcome: ProcessOutcome,
        timeout_seconds: float,
        elapsed_ms: int,
    ) -> ExecutionResult:
        """Build the result for a compile step that did not exit 0.

        Example:
            ```python
            result = coordinator._compile_failed(request, outcome, 30, 120)
            ```
        """
        details = outcome.output
        if outcome.reason is TerminationReason.TIMED_OUT:
            if details and not details.endswith("\n"):
                details += "\n"
            details += f"Compilation timed out after {_seconds(timeout_seconds)} seconds"
        return self._result(
            request,
            output=outcome.output,
            error="Compilation failed:\n" + details,
            exit_code=outcome.exit_code or 0,
            elapsed_ms=elapsed_ms,
            status=ExecutionStatus.COMPILE_FAILED,
        )

    def _cancelled(self, request: ExecutionRequest, output: str, elapsed_ms: int) -> ExecutionResult:
        """Build the result for an execution stopped by the caller.

        Example:
            ```python
            result = coordinator._cancelled(request, "", 0)
            ```
        """
        return self._result(
            request,
            output=output,
            error="Execution cancelled",
            elapsed_ms=elapsed_ms,
            status=ExecutionStatus.CANCELLED,
        )

    def _result(
        self,
        request: ExecutionRequest,
        *,
        status: ExecutionStatus,
        output: str = "",
        error: str = "",
        exit_code: int = 0,
        elapsed_ms: int = 0,
    ) -> ExecutionResult:
        """Create an ExecutionResult for a request.

        Example:
            ```python
            result = coordinator._result(request, status=ExecutionStatus.COMPLETED, output="hi\\n")
            ```
        """
        return ExecutionResult(
            key=request.key,
            language=self._language_id(request.language),
            output=output,
            error=error,
            exit_code=exit_code,
            execution_time_ms=elapsed_ms,
            status=status,
        )

    def _language_id(self, language: str) -> str:
        """Return the canonical id of a known language, else the input unchanged.

        Example:
            ```python
            assert coordinator._language_id("Python") == "python"
            ```
        """
        if language in self._registry:
            return self._registry.get(language).id
        return language
