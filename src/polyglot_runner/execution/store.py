from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field

from .handle import ExecutionHandle
from .types import ExecutionResult


@dataclass(slots=True)
class _KeySlot:
    """Per-key state guarded by its own lock.

    Example:
        ```python
        slot = _KeySlot()
        ```
    """

    lock: threading.Lock = field(default_factory=threading.Lock)
    result: ExecutionResult | None = None
    result_sequence: int = 0
    live: ExecutionHandle | None = None


class ExecutionStore:
    """In-memory map from key to its latest result and live handle.

    Each key has its own lock, so traffic on one key never blocks another.
    Results are ordered by the sequence of the execution that produced
    them: a late result from an older execution never replaces a newer one.

    Example:
        ```python
        store = ExecutionStore()
        assert store.get_result("file-1") is None
        ```
    """

    def __init__(self) -> None:
        """Initialize an empty store.

        Example:
            ```python
            store = ExecutionStore()
            ```
        """
        self._lock = threading.Lock()
        self._slots: dict[str, _KeySlot] = {}
        self._sequence = itertools.count(1)

    def _slot(self, key: str) -> _KeySlot:
        """Return the slot for a key, creating it on first use.

        Example:
            ```python
            slot = store._slot("file-1")
            ```
        """
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _KeySlot()
            return slot

    def _next_sequence(self) -> int:
        """Return the next execution sequence number.

        Example:
            ```python
            seq = store._next_sequence()
            ```
        """
        with self._lock:
            return next(self._sequence)

    def claim(self, key: str, *, supersede: bool) -> tuple[ExecutionHandle | None, ExecutionHandle | None]:
        """Register a new live handle for `key`.

        Returns `(new_handle, previous_handle)`. When a live handle exists and
        `supersede` is False, nothing changes and `new_handle` is None. The
        caller is responsible for cancelling a superseded handle.

        Example:
            ```python
            handle, previous = store.claim("file-1", supersede=True)
            ```
        """
        slot = self._slot(key)
        with slot.lock:
            previous = slot.live
            if previous is not None and not supersede:
                return None, previous
            handle = ExecutionHandle(key, self._next_sequence())
            slot.live = handle
            return handle, previous

    def complete(self, handle: ExecutionHandle, result: ExecutionResult) -> bool:
        """Store a finished result and release the handle in one step.

        Returns True when the result became the key's latest result.

        Example:
            ```python
            stored = store.complete(handle, result)
            ```
        """
        slot = self._slot(handle.key)
        with slot.lock:
            if slot.live is handle:
                slot.live = None
            if handle.sequence < slot.result_sequence:
                return False
            slot.result = result
            slot.result_sequence = handle.sequence
            return True

    def get_result(self, key: str) -> ExecutionResult | None:
        """Return the latest stored result for a key.

        Example:
            ```python
            result = store.get_result("file-1")
            ```
        """
        slot = self._slot(key)
        with slot.lock:
            return slot.result

    def live_handle(self, key: str) -> ExecutionHandle | None:
        """Return the live handle for a key, if any.

        Example:
            ```python
            handle = store.live_handle("file-1")
            ```
        """
        slot = self._slot(key)
        with slot.lock:
            return slot.live

    def live_handles(self) -> list[ExecutionHandle]:
        """Return every live handle across all keys.

        Example:
            ```python
            for handle in store.live_handles():
                handle.cancel()
            ```
        """
        with self._lock:
            slots = list(self._slots.values())
        handles: list[ExecutionHandle] = []
        for slot in slots:
            with slot.lock:
                if slot.live is not None:
                    handles.append(slot.live)
        return handles

    def release(self, handle: ExecutionHandle) -> bool:
        """Clear the live handle of its key if it is still the registered one.

        Example:
            ```python
            store.release(handle)
            ```
        """
        slot = self._slot(handle.key)
        with slot.lock:
            if slot.live is not handle:
                return False
            slot.live = None
            return True
