from __future__ import annotations

import subprocess
import threading

from .process import force_kill
from .types import ExecutionPhase


class ExecutionHandle:
    """Live handle for one in-flight execution of a key.

    The handle outlives individual processes: it is registered before the
    compile step and released after the run step, so a cancel between the
    two steps still prevents the run step from starting.

    Example:
        ```python
        handle = ExecutionHandle("file-1", sequence=3)
        handle.cancel()
        ```
    """

    def __init__(self, key: str, sequence: int) -> None:
        """Create an idle, uncancelled handle.

        Example:
            ```python
            handle = ExecutionHandle("file-1", sequence=1)
            ```
        """
        self.key = key
        self.sequence = sequence
        self._lock = threading.Lock()
        self._process: subprocess.Popen[bytes] | None = None
        self._killed_current = False
        self._cancelled = False
        self._phase: ExecutionPhase | None = None

    @property
    def cancelled(self) -> bool:
        """Return True once `cancel` was called.

        Example:
            ```python
            if handle.cancelled: ...
            ```
        """
        with self._lock:
            return self._cancelled

    @property
    def phase(self) -> ExecutionPhase | None:
        """Return the pipeline step currently executing.

        Example:
            ```python
            phase = handle.phase
            ```
        """
        with self._lock:
            return self._phase

    def enter_phase(self, phase: ExecutionPhase) -> bool:
        """Move to a pipeline step; returns False when already cancelled.

        Example:
            ```python
            if not handle.enter_phase(ExecutionPhase.RUNNING): ...
            ```
        """
        with self._lock:
            if self._cancelled:
                return False
            self._phase = phase
            return True

    def attach(self, process: subprocess.Popen[bytes]) -> bool:
        """Track a freshly spawned process; returns False when already cancelled.

        Example:
            ```python
            if not handle.attach(proc):
                force_kill(proc)
            ```
        """
        with self._lock:
            if self._cancelled:
                return False
            self._process = process
            self._killed_current = False
            return True

    def detach(self, process: subprocess.Popen[bytes]) -> bool:
        """Stop tracking a process; returns True when `cancel` killed it.

        Example:
            ```python
            killed = handle.detach(proc)
            ```
        """
        with self._lock:
            if self._process is not process:
                return False
            killed = self._killed_current
            self._process = None
            self._killed_current = False
            return killed

    def cancel(self) -> None:
        """Mark the execution cancelled and force-kill its current process.

        Example:
            ```python
            handle.cancel()
            ```
        """
        with self._lock:
            self._cancelled = True
            if self._process is not None:
                force_kill(self._process)
                self._killed_current = True
