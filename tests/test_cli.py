from __future__ import annotations

import io
from pathlib import Path

import pytest

from pgr import cli
from polyglot_runner import ExecutionResult, ExecutionStatus


class _FakeRegistry:
    def language_for_file_name(self, name: str):
        class _Lang:
            id = "python" if name.endswith(".py") else "plaintext"

        return _Lang()


class _FakeCoordinator:
    requests: list = []
    result = ExecutionResult(key="k", language="python", output="hi from fake\n")

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.registry = _FakeRegistry()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def execute(self, request):
        self.__class__.requests.append(request)

        class _Done:
            def result(inner_self):
                return self.__class__.result

        return _Done()


@pytest.fixture(autouse=True)
def _patch_coordinator(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "ExecutionCoordinator", _FakeCoordinator)
    _FakeCoordinator.requests = []
    _FakeCoordinator.result = ExecutionResult(key="k", language="python", output="hi from fake\n")


def test_cli_languages_lists_table(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["languages"])
    output = capsys.readouterr().out
    assert code == 0
    assert "Languages" in output
    assert "python" in output
    assert "ruby" in output


def test_cli_run_detects_language(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source = tmp_path / "hello.py"
    source.write_text("print('hi')", encoding="utf-8")

    code = cli.main(["run", str(source), "--timeout-seconds", "3"])
    output = capsys.readouterr().out

    assert code == 0
    assert "hi from fake" in output
    request = _FakeCoordinator.requests[0]
    assert request.language == "python"
    assert request.key == str(source.resolve())
    assert request.timeout_seconds == 3.0
    assert request.source_content is None


def test_cli_run_failure_exit_code(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source = tmp_path / "main.rb"
    source.write_text("puts 1", encoding="utf-8")
    _FakeCoordinator.result = ExecutionResult(
        key="k",
        language="ruby",
        error="execution not supported for Ruby",
        status=ExecutionStatus.UNSUPPORTED,
    )

    code = cli.main(["run", str(source), "--language", "ruby", "--key", "demo"])
    output = capsys.readouterr().out

    assert code == 1
    assert "execution not supported for Ruby" in output
    assert _FakeCoordinator.requests[0].key == "demo"
    assert _FakeCoordinator.requests[0].language == "ruby"


def test_cli_run_missing_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", str(tmp_path / "nope.py")])
    output = capsys.readouterr().out
    assert code == 1
    assert "No such file" in output
    assert _FakeCoordinator.requests == []


def test_cli_invalid_settings(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config = tmp_path / "runner.toml"
    config.write_text("[runner]\noverlap_policy = \"queue\"\n", encoding="utf-8")

    code = cli.main(["--settings", str(config), "languages"])
    output = capsys.readouterr().out

    assert code == 2
    assert "Invalid settings" in output


def test_cli_subcommand_help(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["run", "--help"])
    output = capsys.readouterr().out
    assert exc.value.code == 0
    assert "Run one source file through the execution engine." in output


def test_cli_top_level_help_examples(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["--help"])
    output = capsys.readouterr().out
    assert exc.value.code == 0
    assert "Quick Examples:" in output
    assert "python -m pgr languages" in output
    assert "Config Examples:" in output


def test_cli_print_help_writes_to_requested_stream(capsys: pytest.CaptureFixture[str]) -> None:
    parser = cli.build_parser()
    buffer = io.StringIO()
    parser.print_help(file=buffer)
    output = capsys.readouterr().out
    assert output == ""
    help_text = buffer.getvalue()
    assert "Usage:" in help_text
    assert "polyglot-runner CLI" in help_text


def test_cli_run_rejects_non_positive_timeout(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source = tmp_path / "hello.py"
    source.write_text("print('hi')", encoding="utf-8")

    code = cli.main(["run", str(source), "--timeout-seconds", "0"])
    output = capsys.readouterr().out

    assert code == 2
    assert "Invalid request" in output
    assert _FakeCoordinator.requests == []
