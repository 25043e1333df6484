from __future__ import annotations

import argparse
import logging
from functools import partial
from pathlib import Path
from typing import Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from polyglot_runner import (
    CompileThenRun,
    ExecutionCoordinator,
    ExecutionRequest,
    ExecutionResult,
    LanguageRegistry,
    RunnerSettings,
)

_CONSOLE = Console(no_color=False)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m pgr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for the polyglot-runner developer console.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m pgr",
        description=(
            "polyglot-runner CLI\n"
            "Compile and run one source file the way the editor does.\n"
            "Programs run as local processes without any sandboxing."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m pgr languages\n"
            "  python -m pgr run hello.py\n"
            "  python -m pgr run main.cpp --timeout-seconds 5\n"
            "  python -m pgr run script.txt --language shell\n\n"
            "Config Examples:\n"
            "  python -m pgr --settings runner.toml run Main.java\n"
            "  python -m pgr --verbose run main.rs"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--settings",
        help=(
            "Path to a runner settings TOML file.\n"
            "Values are read from its [runner] table."
        ),
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log process spawns, exits and timeouts.",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    sub.add_parser(
        "languages",
        help="List known languages and how they are executed.",
        description=(
            "Show the language table.\n"
            "Includes id, name, extensions, and pipeline kind."
        ),
        formatter_class=_HELP_FORMATTER,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Compile (when needed) and run one source file.",
        description=(
            "Run one source file through the execution engine.\n"
            "The language is detected from the file extension unless given."
        ),
        epilog=(
            "Examples:\n"
            "  python -m pgr run hello.py\n"
            "  python -m pgr run Main.java --key demo"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("file")
    run_cmd.add_argument(
        "--language",
        help="Language id to use instead of extension detection (e.g. cpp).",
    )
    run_cmd.add_argument(
        "--key",
        help="Execution key (default: absolute path of the file).",
    )
    run_cmd.add_argument(
        "--cwd",
        help="Working directory (default: the file's directory).",
    )
    run_cmd.add_argument(
        "--timeout-seconds",
        type=float,
        help="Run-step timeout overriding settings and language defaults.",
    )

    return parser


def build_settings(args: argparse.Namespace) -> RunnerSettings:
    """Create RunnerSettings from global CLI flags.

    Example:
        ```python
        settings = build_settings(args)
        ```
    """
    if args.settings:
        return RunnerSettings.from_file(args.settings)
    return RunnerSettings()


def _configure_logging(verbose: bool) -> None:
    """Route library logs through Rich when verbose output is requested.

    Example:
        ```python
        _configure_logging(True)
        ```
    """
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        handlers=[RichHandler(console=_CONSOLE, show_path=False)],
    )


def _print_languages(registry: LanguageRegistry) -> None:
    """Render the language table.

    Example:
        ```python
        _print_languages(LanguageRegistry.default())
        ```
    """
    table = Table(title="Languages")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Extensions")
    table.add_column("Pipeline")
    table.add_column("Run")
    for language in registry.languages():
        pipeline = language.pipeline
        if isinstance(pipeline, CompileThenRun):
            command = f"{' '.join(pipeline.compile_template)} && {' '.join(pipeline.run_template)}"
        elif pipeline is not None:
            command = " ".join(pipeline.run_template)
        else:
            command = "-"
        table.add_row(
            language.id,
            language.display_name,
            ", ".join(language.extensions),
            language.kind,
            Text(command),
        )
    _CONSOLE.print(table)


def _print_result(result: ExecutionResult) -> None:
    """Render one execution result as panels.

    Example:
        ```python
        _print_result(result)
        ```
    """
    summary = Table.grid(padding=(0, 2))
    summary.add_column(style="bold")
    summary.add_column()
    summary.add_row("Language", result.language)
    summary.add_row("Status", result.status.value)
    summary.add_row("Exit code", str(result.exit_code))
    summary.add_row("Time", f"{result.execution_time_ms} ms")
    style = "green" if result.success else "red"
    _CONSOLE.print(Panel.fit(summary, title="Success" if result.success else "Failed", border_style=style))
    if result.output:
        _CONSOLE.print(Panel(Text(result.output), title="Output", border_style="cyan"))
    if result.error:
        _CONSOLE.print(Panel(Text(result.error), title="Error", border_style="red"))


def _run_file(args: argparse.Namespace, settings: RunnerSettings) -> int:
    """Execute one file and render its result.

    Example:
        ```python
        code = _run_file(args, RunnerSettings())
        ```
    """
    path = Path(args.file).expanduser()
    if not path.is_file():
        _CONSOLE.print(Panel.fit(f"No such file: {path}", style="bold red"))
        return 1

    with ExecutionCoordinator(settings=settings) as coordinator:
        language = args.language or coordinator.registry.language_for_file_name(path.name).id
        try:
            request = ExecutionRequest(
                key=args.key or str(path.resolve()),
                language=language,
                source_path=path.resolve(),
                working_directory=args.cwd,
                timeout_seconds=args.timeout_seconds,
            )
        except ValueError as exc:
            _CONSOLE.print(Panel.fit(f"Invalid request: {exc}", style="bold red"))
            return 2
        future = coordinator.execute(request)
        try:
            result = future.result()
        except KeyboardInterrupt:
            coordinator.stop(request.key)
            result = future.result()
    _print_result(result)
    return 0 if result.success else 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `pgr` CLI command handler.

    Example:
        ```python
        code = main(["run", "hello.py"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)
    try:
        settings = build_settings(args)
    except (OSError, ValueError) as exc:
        _CONSOLE.print(Panel.fit(f"Invalid settings: {exc}", style="bold red"))
        return 2

    if args.command == "languages":
        if settings.languages_file:
            registry = LanguageRegistry.from_file(settings.languages_file)
        else:
            registry = LanguageRegistry.default()
        _print_languages(registry)
        return 0
    if args.command == "run":
        return _run_file(args, settings)

    parser.error("Unhandled command")
    return 2
