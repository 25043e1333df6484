from __future__ import annotations

import os
import sys
import time
from pathlib import Path
from typing import Callable, Iterator

import pytest

from polyglot_runner import (
    CompileThenRun,
    ExecutionCoordinator,
    Language,
    LanguageRegistry,
    RunOnly,
    RunnerSettings,
)

# Checks the source with Python's own parser, then copies it to the artifact path.
_FAKE_COMPILER = """\
import shutil
import sys

src, out = sys.argv[1], sys.argv[2]
with open(src, encoding="utf-8") as handle:
    text = handle.read()
try:
    compile(text, src, "exec")
except SyntaxError as exc:
    print(f"{src}:{exc.lineno}: error: {exc.msg}")
    sys.exit(1)
shutil.copyfile(src, out)
"""

# Never finishes: used to hold an execution in its compile step.
_STALLED_COMPILER = """\
import time

print("compiling", flush=True)
time.sleep(30)
"""


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def process_gone(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    # An unreaped zombie still answers signal 0; its state tells us it is dead.
    stat = Path(f"/proc/{pid}/stat")
    return stat.exists() and stat.read_text().split(")")[-1].split()[0] == "Z"


def make_registry(tool_dir: Path) -> LanguageRegistry:
    compiler = tool_dir / "fake_compiler.py"
    compiler.write_text(_FAKE_COMPILER, encoding="utf-8")
    stalled = tool_dir / "stalled_compiler.py"
    stalled.write_text(_STALLED_COMPILER, encoding="utf-8")
    return LanguageRegistry(
        [
            Language(
                "python",
                "Python",
                ("py",),
                "text/x-python",
                RunOnly(run_template=(sys.executable, "{source}")),
            ),
            Language(
                "checked",
                "Checked Python",
                ("cpy",),
                "text/x-python",
                CompileThenRun(
                    compile_template=(sys.executable, str(compiler), "{source}", "{artifact}"),
                    artifact_template="{build_dir}/{source_stem}_built.py",
                    run_template=(sys.executable, "{artifact}"),
                ),
            ),
            Language(
                "stalled",
                "Stalled Build",
                ("stl",),
                pipeline=CompileThenRun(
                    compile_template=(sys.executable, str(stalled), "{source}"),
                    artifact_template="{build_dir}/{source_stem}_built.py",
                    run_template=(sys.executable, "{artifact}"),
                ),
            ),
            Language(
                "missing",
                "Missing Tool",
                ("mt",),
                pipeline=RunOnly(run_template=("polyglot-runner-no-such-tool", "{source}")),
            ),
            Language("ruby", "Ruby", ("rb",), "text/x-ruby"),
            Language("plaintext", "Plain Text", ("txt",)),
        ]
    )


@pytest.fixture
def registry(tmp_path: Path) -> LanguageRegistry:
    tool_dir = tmp_path / "tools"
    tool_dir.mkdir()
    return make_registry(tool_dir)


@pytest.fixture
def settings(tmp_path: Path) -> RunnerSettings:
    return RunnerSettings(
        run_timeout_seconds=20,
        compile_timeout_seconds=20,
        build_dir=str(tmp_path / "builds"),
        kill_grace_seconds=1,
    )


@pytest.fixture
def coordinator(settings: RunnerSettings, registry: LanguageRegistry) -> Iterator[ExecutionCoordinator]:
    with ExecutionCoordinator(settings=settings, registry=registry) as instance:
        yield instance
