from pathlib import Path

import pytest

from polyglot_runner import CompileThenRun, LanguageRegistry, NotSupported, RunOnly


def test_default_table_pipeline_kinds() -> None:
    registry = LanguageRegistry.default()

    assert registry.get("python").kind == "interpreted"
    assert registry.get("cpp").kind == "compiled"
    assert registry.get("java").kind == "compiled"
    assert registry.get("ruby").kind == "unsupported"
    assert registry.get("ruby").supports_execution is False
    assert isinstance(registry.pipeline_for("shell"), RunOnly)
    assert isinstance(registry.pipeline_for("rust"), CompileThenRun)


def test_unsupported_language_message_uses_display_name() -> None:
    registry = LanguageRegistry.default()

    answer = registry.pipeline_for("ruby")

    assert isinstance(answer, NotSupported)
    assert answer.message == "execution not supported for Ruby"


def test_unknown_language_is_not_supported_and_get_raises() -> None:
    registry = LanguageRegistry.default()

    answer = registry.pipeline_for("cobol")

    assert isinstance(answer, NotSupported)
    assert answer.message == "execution not supported for cobol"
    assert "cobol" not in registry
    with pytest.raises(KeyError):
        registry.get("cobol")


def test_lookup_is_case_insensitive() -> None:
    registry = LanguageRegistry.default()

    assert "Python" in registry
    assert registry.get("CPP").display_name == "C++"


def test_python_run_argv_targets_source() -> None:
    pipeline = LanguageRegistry.default().pipeline_for("python")

    assert isinstance(pipeline, RunOnly)
    argv = pipeline.run_argv(Path("/work/main.py"), Path("/builds/k1"))
    assert argv == ["python3", str(Path("/work/main.py"))]


def test_cpp_artifact_lives_in_build_dir() -> None:
    pipeline = LanguageRegistry.default().pipeline_for("cpp")
    source = Path("/work/main.cpp")
    build_dir = Path("/builds/k1")

    assert isinstance(pipeline, CompileThenRun)
    artifact = pipeline.artifact_path(source, build_dir)
    assert artifact == build_dir / "main"
    assert pipeline.compile_argv(source, build_dir) == ["g++", "-o", str(artifact), str(source)]
    assert pipeline.run_argv(source, build_dir) == [str(artifact)]


def test_java_runs_class_from_build_dir() -> None:
    pipeline = LanguageRegistry.default().pipeline_for("java")
    source = Path("/work/Main.java")
    build_dir = Path("/builds/k1")

    assert isinstance(pipeline, CompileThenRun)
    assert pipeline.compile_argv(source, build_dir) == ["javac", "-d", str(build_dir), str(source)]
    assert pipeline.run_argv(source, build_dir) == ["java", "-cp", str(build_dir), "Main"]


def test_language_for_extension_and_file_name() -> None:
    registry = LanguageRegistry.default()

    assert registry.language_for_extension("PY").id == "python"
    assert registry.language_for_extension(".rs").id == "rust"
    assert registry.language_for_extension("zzz").id == "plaintext"
    assert registry.language_for_file_name("src/Main.java").id == "java"
    assert registry.language_for_file_name("Makefile").id == "plaintext"


def test_custom_table_from_file(tmp_path: Path) -> None:
    table = tmp_path / "languages.toml"
    table.write_text(
        (
            "[languages.lua]\n"
            "display_name = \"Lua\"\n"
            "extensions = [\"lua\"]\n"
            "run = [\"lua\", \"{source}\"]\n"
            "run_timeout_seconds = 5\n"
        ),
        encoding="utf-8",
    )

    registry = LanguageRegistry.from_file(table)

    pipeline = registry.pipeline_for("lua")
    assert isinstance(pipeline, RunOnly)
    assert pipeline.run_timeout_seconds == 5.0
    assert registry.language_for_file_name("x.lua").display_name == "Lua"


def test_compile_step_requires_artifact(tmp_path: Path) -> None:
    table = tmp_path / "languages.toml"
    table.write_text(
        (
            "[languages.zig]\n"
            "display_name = \"Zig\"\n"
            "compile = [\"zig\", \"build-exe\", \"{source}\"]\n"
            "run = [\"{artifact}\"]\n"
        ),
        encoding="utf-8",
    )

    with pytest.raises(ValueError, match="artifact"):
        LanguageRegistry.from_file(table)


def test_unknown_placeholder_is_rejected(tmp_path: Path) -> None:
    table = tmp_path / "languages.toml"
    table.write_text(
        (
            "[languages.py2]\n"
            "display_name = \"Py2\"\n"
            "run = [\"python2\", \"{file}\"]\n"
        ),
        encoding="utf-8",
    )

    with pytest.raises(ValueError, match="unknown placeholder"):
        LanguageRegistry.from_file(table)


def test_run_only_cannot_reference_artifact(tmp_path: Path) -> None:
    table = tmp_path / "languages.toml"
    table.write_text(
        (
            "[languages.odd]\n"
            "display_name = \"Odd\"\n"
            "run = [\"{artifact}\"]\n"
        ),
        encoding="utf-8",
    )

    with pytest.raises(ValueError, match="artifact"):
        LanguageRegistry.from_file(table)
