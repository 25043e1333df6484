from __future__ import annotations

import tempfile
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

OVERLAP_POLICIES = frozenset({"supersede", "reject"})


def _default_settings_path() -> Path:
    """Return bundled default settings TOML path.

    Example:
        ```python
        path = _default_settings_path()
        ```
    """
    return Path(__file__).with_name("default_settings.toml")


def _default_build_dir() -> str:
    """Return the default root for per-key compile artifacts.

    Example:
        ```python
        root = _default_build_dir()
        ```
    """
    return str(Path(tempfile.gettempdir()) / "polyglot-runner" / "builds")


def _read_settings_toml(path: Path) -> dict[str, Any]:
    """Read settings TOML and return the `[runner]` table.

    Example:
        ```python
        raw = _read_settings_toml(Path("/tmp/runner.toml"))
        ```
    """
    if not path.exists():
        return {
            "run_timeout_seconds": 60,
            "compile_timeout_seconds": 30,
            "overlap_policy": "supersede",
            "max_workers": 8,
            "max_output_kb": 512,
            "kill_grace_seconds": 2,
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    runner_obj = raw.get("runner", raw)
    if not isinstance(runner_obj, dict):
        raise ValueError("Runner config must be a TOML table")
    return runner_obj


def _optional_str(value: Any, field_name: str) -> str | None:
    """Validate an optional string setting.

    Example:
        ```python
        path = _optional_str("/tmp/languages.toml", "languages_file")
        ```
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"'{field_name}' must be a string")
    return value


_DEFAULT_SETTINGS_RAW = _read_settings_toml(_default_settings_path())
DEFAULT_RUN_TIMEOUT_SECONDS = float(_DEFAULT_SETTINGS_RAW.get("run_timeout_seconds", 60))
DEFAULT_COMPILE_TIMEOUT_SECONDS = float(_DEFAULT_SETTINGS_RAW.get("compile_timeout_seconds", 30))
DEFAULT_OVERLAP_POLICY = str(_DEFAULT_SETTINGS_RAW.get("overlap_policy", "supersede"))
DEFAULT_MAX_WORKERS = int(_DEFAULT_SETTINGS_RAW.get("max_workers", 8))
DEFAULT_MAX_OUTPUT_KB = int(_DEFAULT_SETTINGS_RAW.get("max_output_kb", 512))
DEFAULT_KILL_GRACE_SECONDS = float(_DEFAULT_SETTINGS_RAW.get("kill_grace_seconds", 2))


@dataclass(slots=True)
class RunnerSettings:
    """Execution limits and behaviour shared by every run.

    `overlap_policy` decides what happens when `execute` is called for a key
    that already has a live execution: `supersede` cancels the old run,
    `reject` fails the new request.

    Example:
        ```python
        settings = RunnerSettings(run_timeout_seconds=10, overlap_policy="reject")
        ```
    """

    run_timeout_seconds: float = DEFAULT_RUN_TIMEOUT_SECONDS
    compile_timeout_seconds: float = DEFAULT_COMPILE_TIMEOUT_SECONDS
    overlap_policy: str = DEFAULT_OVERLAP_POLICY
    max_workers: int = DEFAULT_MAX_WORKERS
    max_output_kb: int = DEFAULT_MAX_OUTPUT_KB
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS
    build_dir: str = ""
    languages_file: str | None = None
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate limits after dataclass initialization.

        Example:
            ```python
            RunnerSettings(overlap_policy="supersede")
            ```
        """
        if self.overlap_policy not in OVERLAP_POLICIES:
            raise ValueError("overlap_policy must be 'supersede' or 'reject'")
        if self.run_timeout_seconds <= 0 or self.compile_timeout_seconds <= 0:
            raise ValueError("timeouts must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.max_output_kb < 1:
            raise ValueError("max_output_kb must be at least 1")
        if self.kill_grace_seconds < 0:
            raise ValueError("kill_grace_seconds must not be negative")
        if not self.build_dir:
            self.build_dir = _default_build_dir()

    @property
    def max_output_bytes(self) -> int:
        """Return the merged-output cap in bytes.

        Example:
            ```python
            limit = settings.max_output_bytes
            ```
        """
        return self.max_output_kb * 1024

    @classmethod
    def from_file(cls, config_path: str) -> "RunnerSettings":
        """Create settings from a TOML file.

        Example:
            ```python
            settings = RunnerSettings.from_file("/tmp/runner.toml")
            ```
        """
        raw = _read_settings_toml(Path(config_path))
        return cls(
            run_timeout_seconds=float(raw.get("run_timeout_seconds", DEFAULT_RUN_TIMEOUT_SECONDS)),
            compile_timeout_seconds=float(
                raw.get("compile_timeout_seconds", DEFAULT_COMPILE_TIMEOUT_SECONDS)
            ),
            overlap_policy=str(raw.get("overlap_policy", DEFAULT_OVERLAP_POLICY)),
            max_workers=int(raw.get("max_workers", DEFAULT_MAX_WORKERS)),
            max_output_kb=int(raw.get("max_output_kb", DEFAULT_MAX_OUTPUT_KB)),
            kill_grace_seconds=float(raw.get("kill_grace_seconds", DEFAULT_KILL_GRACE_SECONDS)),
            build_dir=_optional_str(raw.get("build_dir"), "build_dir") or "",
            languages_file=_optional_str(raw.get("languages_file"), "languages_file"),
            config_path=config_path,
        )
