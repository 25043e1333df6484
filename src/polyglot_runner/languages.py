from __future__ import annotations

import string
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

_SOURCE_FIELDS = frozenset({"source", "source_dir", "source_stem", "build_dir"})
_ARTIFACT_FIELDS = frozenset({"artifact", "artifact_dir", "artifact_stem"})
_FALLBACK_LANGUAGE = "plaintext"


def _default_languages_path() -> Path:
    """Return the bundled language table path.

    Example:
        ```python
        path = _default_languages_path()
        ```
    """
    return Path(__file__).with_name("languages.toml")


def _template_fields(template: str) -> set[str]:
    """Return the placeholder names used by one template string.

    Example:
        ```python
        names = _template_fields("{build_dir}/{source_stem}")
        ```
    """
    return {name for _, name, _, _ in string.Formatter().parse(template) if name is not None}


def _check_fields(templates: Iterable[str], allowed: frozenset[str], where: str) -> None:
    """Reject templates that reference unknown placeholders.

    Example:
        ```python
        _check_fields(["python3", "{source}"], _SOURCE_FIELDS, "python.run")
        ```
    """
    for template in templates:
        unknown = _template_fields(template) - allowed
        if unknown:
            raise ValueError(f"'{where}' uses unknown placeholder(s): {', '.join(sorted(unknown))}")


def _source_values(source: Path, build_dir: Path) -> dict[str, str]:
    """Build placeholder values derived from the source path.

    Example:
        ```python
        values = _source_values(Path("/w/main.c"), Path("/b/k1"))
        ```
    """
    return {
        "source": str(source),
        "source_dir": str(source.parent),
        "source_stem": source.stem,
        "build_dir": str(build_dir),
    }


def _render(templates: tuple[str, ...], values: dict[str, str]) -> list[str]:
    """Render an argv template into concrete arguments.

    Example:
        ```python
        argv = _render(("python3", "{source}"), {"source": "/w/main.py"})
        ```
    """
    return [template.format(**values) for template in templates]


@dataclass(frozen=True, slots=True)
class RunOnly:
    """Pipeline with a single run step on the source file.

    Example:
        ```python
        pipeline = RunOnly(run_template=("python3", "{source}"))
        ```
    """

    run_template: tuple[str, ...]
    run_timeout_seconds: float | None = None

    def run_argv(self, source: Path, build_dir: Path) -> list[str]:
        """Return the argv that runs the source file.

        Example:
            ```python
            argv = pipeline.run_argv(Path("/w/main.py"), Path("/b/k1"))
            ```
        """
        return _render(self.run_template, _source_values(source, build_dir))


@dataclass(frozen=True, slots=True)
class CompileThenRun:
    """Pipeline that compiles the source into an artifact and then runs it.

    Example:
        ```python
        pipeline = CompileThenRun(
            compile_template=("gcc", "-o", "{artifact}", "{source}"),
            artifact_template="{build_dir}/{source_stem}",
            run_template=("{artifact}",),
        )
        ```
    """

    compile_template: tuple[str, ...]
    artifact_template: str
    run_template: tuple[str, ...]
    compile_timeout_seconds: float | None = None
    run_timeout_seconds: float | None = None

    def artifact_path(self, source: Path, build_dir: Path) -> Path:
        """Return where the compile step leaves its artifact.

        Example:
            ```python
            artifact = pipeline.artifact_path(Path("/w/main.c"), Path("/b/k1"))
            ```
        """
        return Path(self.artifact_template.format(**_source_values(source, build_dir)))

    def _values(self, source: Path, build_dir: Path) -> dict[str, str]:
        """Return source and artifact placeholder values.

        Example:
            ```python
            values = pipeline._values(Path("/w/main.c"), Path("/b/k1"))
            ```
        """
        artifact = self.artifact_path(source, build_dir)
        values = _source_values(source, build_dir)
        values.update(
            artifact=str(artifact),
            artifact_dir=str(artifact.parent),
            artifact_stem=artifact.stem,
        )
        return values

    def compile_argv(self, source: Path, build_dir: Path) -> list[str]:
        """Return the argv of the compile step.

        Example:
            ```python
            argv = pipeline.compile_argv(Path("/w/main.c"), Path("/b/k1"))
            ```
        """
        return _render(self.compile_template, self._values(source, build_dir))

    def run_argv(self, source: Path, build_dir: Path) -> list[str]:
        """Return the argv that runs the compiled artifact.

        Example:
            ```python
            argv = pipeline.run_argv(Path("/w/main.c"), Path("/b/k1"))
            ```
        """
        return _render(self.run_template, self._values(source, build_dir))


@dataclass(frozen=True, slots=True)
class NotSupported:
    """Lookup answer for languages that cannot be executed.

    Example:
        ```python
        answer = NotSupported(language="ruby", display_name="Ruby")
        ```
    """

    language: str
    display_name: str

    @property
    def message(self) -> str:
        """Return the error text reported to the caller.

        Example:
            ```python
            text = NotSupported("ruby", "Ruby").message
            ```
        """
        return f"execution not supported for {self.display_name}"


PipelineSpec = RunOnly | CompileThenRun


@dataclass(frozen=True, slots=True)
class Language:
    """One entry of the language table.

    Example:
        ```python
        lang = Language("python", "Python", ("py",), "text/x-python", RunOnly(("python3", "{source}")))
        ```
    """

    id: str
    display_name: str
    extensions: tuple[str, ...]
    mime_type: str = "text/plain"
    pipeline: PipelineSpec | None = None

    @property
    def supports_execution(self) -> bool:
        """Return True when the language has a run pipeline.

        Example:
            ```python
            lang.supports_execution
            ```
        """
        return self.pipeline is not None

    @property
    def kind(self) -> str:
        """Return `interpreted`, `compiled` or `unsupported`.

        Example:
            ```python
            assert lang.kind == "interpreted"
            ```
        """
        if isinstance(self.pipeline, CompileThenRun):
            return "compiled"
        if isinstance(self.pipeline, RunOnly):
            return "interpreted"
        return "unsupported"


def _optional_timeout(raw: dict[str, Any], name: str, where: str) -> float | None:
    """Read an optional positive timeout from a language table.

    Example:
        ```python
        timeout = _optional_timeout({"run_timeout_seconds": 10}, "run_timeout_seconds", "python")
        ```
    """
    value = raw.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"'{where}.{name}' must be a positive number")
    return float(value)


def _argv_template(value: Any, where: str) -> tuple[str, ...]:
    """Validate an argv template list.

    Example:
        ```python
        argv = _argv_template(["python3", "{source}"], "python.run")
        ```
    """
    if not isinstance(value, list) or not value or not all(isinstance(item, str) for item in value):
        raise ValueError(f"'{where}' must be a non-empty list of strings")
    return tuple(value)


def _parse_language(language_id: str, raw: Any) -> Language:
    """Build a Language from one `[languages.<id>]` TOML table.

    Example:
        ```python
        lang = _parse_language("python", {"display_name": "Python", "extensions": ["py"], "run": ["python3", "{source}"]})
        ```
    """
    if not isinstance(raw, dict):
        raise ValueError(f"Language '{language_id}' must be a TOML table")
    extensions = raw.get("extensions", [])
    if not isinstance(extensions, list) or not all(isinstance(ext, str) for ext in extensions):
        raise ValueError(f"'{language_id}.extensions' must be a list of strings")

    pipeline: PipelineSpec | None = None
    if "run" in raw:
        run = _argv_template(raw["run"], f"{language_id}.run")
        run_timeout = _optional_timeout(raw, "run_timeout_seconds", language_id)
        if "compile" in raw:
            compile_ = _argv_template(raw["compile"], f"{language_id}.compile")
            artifact = raw.get("artifact")
            if not isinstance(artifact, str) or not artifact:
                raise ValueError(f"'{language_id}.compile' requires an 'artifact' path template")
            _check_fields([artifact], _SOURCE_FIELDS, f"{language_id}.artifact")
            _check_fields(compile_, _SOURCE_FIELDS | _ARTIFACT_FIELDS, f"{language_id}.compile")
            _check_fields(run, _SOURCE_FIELDS | _ARTIFACT_FIELDS, f"{language_id}.run")
            pipeline = CompileThenRun(
                compile_template=compile_,
                artifact_template=artifact,
                run_template=run,
                compile_timeout_seconds=_optional_timeout(raw, "compile_timeout_seconds", language_id),
                run_timeout_seconds=run_timeout,
            )
        else:
            _check_fields(run, _SOURCE_FIELDS, f"{language_id}.run")
            pipeline = RunOnly(run_template=run, run_timeout_seconds=run_timeout)
    elif "compile" in raw:
        raise ValueError(f"Language '{language_id}' has a compile step but no 'run' template")

    return Language(
        id=language_id.lower(),
        display_name=str(raw.get("display_name", language_id)),
        extensions=tuple(ext.lower() for ext in extensions),
        mime_type=str(raw.get("mime_type", "text/plain")),
        pipeline=pipeline,
    )


class LanguageRegistry:
    """Static lookup table from language id to its build/run pipeline.

    Example:
        ```python
        registry = LanguageRegistry.default()
        pipeline = registry.pipeline_for("python")
        ```
    """

    def __init__(self, languages: Iterable[Language]) -> None:
        """Index languages by id and by file extension.

        Example:
            ```python
            registry = LanguageRegistry([Language("python", "Python", ("py",))])
            ```
        """
        self._by_id: dict[str, Language] = {}
        self._by_extension: dict[str, Language] = {}
        for language in languages:
            if language.id in self._by_id:
                raise ValueError(f"Duplicate language id: {language.id}")
            self._by_id[language.id] = language
            for ext in language.extensions:
                self._by_extension.setdefault(ext.lower(), language)

    @classmethod
    def from_file(cls, path: str | Path) -> "LanguageRegistry":
        """Load a registry from a TOML language table.

        Example:
            ```python
            registry = LanguageRegistry.from_file("/etc/polyglot/languages.toml")
            ```
        """
        raw = tomllib.loads(Path(path).read_text(encoding="utf-8"))
        table = raw.get("languages")
        if not isinstance(table, dict):
            raise ValueError("Language config must contain a [languages] table")
        return cls(_parse_language(language_id, entry) for language_id, entry in table.items())

    @classmethod
    def default(cls) -> "LanguageRegistry":
        """Load the bundled language table.

        Example:
            ```python
            registry = LanguageRegistry.default()
            ```
        """
        return cls.from_file(_default_languages_path())

    def __contains__(self, language_id: object) -> bool:
        """Return True when the id is known.

        Example:
            ```python
            assert "python" in registry
            ```
        """
        return isinstance(language_id, str) and language_id.lower() in self._by_id

    def get(self, language_id: str) -> Language:
        """Return a language by id, raising KeyError when unknown.

        Example:
            ```python
            lang = registry.get("cpp")
            ```
        """
        return self._by_id[language_id.lower()]

    def languages(self) -> list[Language]:
        """Return every language in table order.

        Example:
            ```python
            names = [lang.display_name for lang in registry.languages()]
            ```
        """
        return list(self._by_id.values())

    def pipeline_for(self, language_id: str) -> PipelineSpec | NotSupported:
        """Return the pipeline of a language, or NotSupported.

        Example:
            ```python
            pipeline = registry.pipeline_for("ruby")
            ```
        """
        language = self._by_id.get(language_id.lower())
        if language is None:
            return NotSupported(language=language_id, display_name=language_id)
        if language.pipeline is None:
            return NotSupported(language=language.id, display_name=language.display_name)
        return language.pipeline

    def language_for_extension(self, extension: str) -> Language:
        """Return the language owning a file extension, Plain Text when unknown.

        Example:
            ```python
            lang = registry.language_for_extension("PY")
            ```
        """
        found = self._by_extension.get(extension.lower().lstrip("."))
        if found is not None:
            return found
        if _FALLBACK_LANGUAGE in self._by_id:
            return self._by_id[_FALLBACK_LANGUAGE]
        return Language(_FALLBACK_LANGUAGE, "Plain Text", ("txt",))

    def language_for_file_name(self, file_name: str) -> Language:
        """Return the language for a file name based on its extension.

        Example:
            ```python
            lang = registry.language_for_file_name("main.cpp")
            ```
        """
        name = Path(file_name).name
        _, dot, extension = name.rpartition(".")
        return self.language_for_extension(extension if dot else "")
