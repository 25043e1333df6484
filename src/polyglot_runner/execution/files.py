from __future__ import annotations

from pathlib import Path
from typing import Protocol


class FileStore(Protocol):
    def write_text(self, path: str | Path, content: str) -> None:
        """Persist source content before any process starts.

        Example:
            ```python
            store.write_text("/tmp/work/main.py", "print('hi')")
            ```
        """
        ...


class LocalFileStore:
    """Write sources straight to the local filesystem.

    Example:
        ```python
        LocalFileStore().write_text("/tmp/work/main.py", "print('hi')")
        ```
    """

    def write_text(self, path: str | Path, content: str) -> None:
        """Write UTF-8 text, creating parent directories as needed.

        Example:
            ```python
            LocalFileStore().write_text("/tmp/work/main.py", "print('hi')")
            ```
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
