from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import IO, TYPE_CHECKING, Sequence

from .types import ProcessOutcome, TerminationReason

if TYPE_CHECKING:
    from .handle import ExecutionHandle

logger = logging.getLogger(__name__)

_POSIX = os.name == "posix"
_READ_CHUNK = 64 * 1024


def _elapsed_ms(started: float) -> int:
    """Return milliseconds elapsed since a `time.monotonic()` mark.

    Example:
        ```python
        ms = _elapsed_ms(time.monotonic())
        ```
    """
    return int((time.monotonic() - started) * 1000)


def _spawn_options() -> dict[str, object]:
    """Return Popen options that put the child in its own process group.

    Example:
        ```python
        proc = subprocess.Popen(["true"], **_spawn_options())
        ```
    """
    if _POSIX:
        return {"start_new_session": True}
    return {"creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)}


def force_kill(process: subprocess.Popen[bytes]) -> bool:
    """Force-kill a process and, on POSIX, its whole process group.

    On POSIX the group is signalled even after the leader has exited, so
    helpers it left running in the background die too. Returns True when a
    kill signal was delivered.

    Example:
        ```python
        killed = force_kill(proc)
        ```
    """
    if _POSIX:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            return False
    else:
        if process.poll() is not None:
            return False
        try:
            process.kill()
        except ProcessLookupError:
            return False
    logger.debug("Force-killed process group of pid=%s", process.pid)
    return True


class _OutputCollector:
    """Drain a pipe on a background thread, keeping only the first `limit` bytes.

    Example:
        ```python
        collector = _OutputCollector(proc.stdout, limit=1024)
        ```
    """

    def __init__(self, stream: IO[bytes], limit: int) -> None:
        """Start draining `stream` immediately.

        Example:
            ```python
            collector = _OutputCollector(proc.stdout, limit=1024)
            ```
        """
        self._stream = stream
        self._limit = limit
        self._lock = threading.Lock()
        self._data = bytearray()
        self._dropped = 0
        self._thread = threading.Thread(target=self._pump, name="polyglot-output", daemon=True)
        self._thread.start()

    def _pump(self) -> None:
        """Read until EOF, discarding bytes beyond the cap.

        Example:
            ```python
            collector._pump()
            ```
        """
        try:
            while True:
                chunk = self._stream.read1(_READ_CHUNK)
                if not chunk:
                    break
                with self._lock:
                    room = max(self._limit - len(self._data), 0)
                    self._data += chunk[:room]
                    self._dropped += len(chunk) - min(room, len(chunk))
        except (OSError, ValueError) as exc:
            logger.debug("Output pipe closed while reading: %s", exc)
        finally:
            self._stream.close()

    def finish(self, timeout: float) -> bool:
        """Wait for EOF; returns False when the pipe is still held open.

        Example:
            ```python
            complete = collector.finish(timeout=2)
            ```
        """
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def snapshot(self) -> tuple[bytes, int]:
        """Return the kept bytes and how many bytes were discarded.

        Example:
            ```python
            data, dropped = collector.snapshot()
            ```
        """
        with self._lock:
            return bytes(self._data), self._dropped


class ProcessRunner:
    """Run one external command with merged output and a hard timeout.

    Output is drained while the program runs, and at most `max_output_bytes`
    of it is kept in memory.

    Example:
        ```python
        runner = ProcessRunner(max_output_bytes=64 * 1024)
        outcome = runner.run(["python3", "main.py"], "/tmp/work", timeout_seconds=5)
        ```
    """

    def __init__(self, *, max_output_bytes: int = 512 * 1024, kill_grace_seconds: float = 2.0) -> None:
        """Initialize output and drain limits.

        Example:
            ```python
            runner = ProcessRunner(max_output_bytes=1024, kill_grace_seconds=1)
            ```
        """
        if max_output_bytes < 1:
            raise ValueError("max_output_bytes must be positive")
        self._max_output_bytes = max_output_bytes
        self._kill_grace_seconds = kill_grace_seconds

    def run(
        self,
        argv: Sequence[str],
        working_directory: str | Path,
        timeout_seconds: float,
        *,
        handle: ExecutionHandle | None = None,
    ) -> ProcessOutcome:
        """Spawn `argv`, wait up to `timeout_seconds`, and normalize the outcome.

        The live process is attached to `handle` while it runs so another
        thread can cancel it; a cancelled handle yields `CANCELLED`. When the
        program exits, anything left in its process group is killed.

        Example:
            ```python
            outcome = runner.run(["bash", "job.sh"], "/tmp/work", 30, handle=handle)
            ```
        """
        started = time.monotonic()
        try:
            process = subprocess.Popen(
                list(argv),
                cwd=str(working_directory),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                **_spawn_options(),
            )
        except (OSError, ValueError) as exc:
            logger.warning("Failed to launch %s: %s", argv[0] if argv else "<empty>", exc)
            return ProcessOutcome(
                output=str(exc),
                exit_code=None,
                elapsed_ms=_elapsed_ms(started),
                reason=TerminationReason.LAUNCH_FAILED,
            )

        logger.debug("Spawned pid=%s argv=%s cwd=%s", process.pid, list(argv), working_directory)
        assert process.stdout is not None
        collector = _OutputCollector(process.stdout, self._max_output_bytes)
        if handle is not None and not handle.attach(process):
            force_kill(process)
            self._settle(process, collector)
            return ProcessOutcome(
                output=self._decode(collector),
                exit_code=None,
                elapsed_ms=_elapsed_ms(started),
                reason=TerminationReason.CANCELLED,
            )

        reason = TerminationReason.COMPLETED
        killed_by_handle = False
        try:
            process.wait(timeout=timeout_seconds)
        except subprocess.TimeoutExpired:
            logger.warning("pid=%s timed out after %ss", process.pid, timeout_seconds)
            reason = TerminationReason.TIMED_OUT
        finally:
            force_kill(process)
            if handle is not None:
                killed_by_handle = handle.detach(process)
        self._settle(process, collector)

        elapsed = _elapsed_ms(started)
        output = self._decode(collector)
        if reason is TerminationReason.TIMED_OUT:
            return ProcessOutcome(output=output, exit_code=None, elapsed_ms=elapsed, reason=reason)
        if killed_by_handle:
            logger.debug("pid=%s cancelled after %sms", process.pid, elapsed)
            return ProcessOutcome(output=output, exit_code=None, elapsed_ms=elapsed, reason=TerminationReason.CANCELLED)
        logger.debug("pid=%s exited with %s after %sms", process.pid, process.returncode, elapsed)
        return ProcessOutcome(output=output, exit_code=process.returncode, elapsed_ms=elapsed, reason=reason)

    def _settle(self, process: subprocess.Popen[bytes], collector: _OutputCollector) -> None:
        """Reap a killed process and wait a bounded time for its output to end.

        Example:
            ```python
            runner._settle(proc, collector)
            ```
        """
        try:
            process.wait(timeout=self._kill_grace_seconds)
        except subprocess.TimeoutExpired:
            logger.warning("pid=%s did not exit after kill", process.pid)
        if not collector.finish(self._kill_grace_seconds):
            # A process outside the group still holds the pipe; keep what arrived.
            logger.warning("pid=%s left its output pipe open; output may be incomplete", process.pid)

    def _decode(self, collector: _OutputCollector) -> str:
        """Decode collected output, marking it when the cap was hit.

        Example:
            ```python
            text = runner._decode(collector)
            ```
        """
        data, dropped = collector.snapshot()
        text = data.decode("utf-8", errors="replace")
        if not dropped:
            return text
        return f"{text}\n[output truncated after {self._max_output_bytes} bytes]\n"
