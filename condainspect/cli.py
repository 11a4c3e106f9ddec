"""Command-line interface for inspecting Conda environment files."""

from __future__ import annotations

import argparse
import logging
import os
import subprocess
import sys
import time
from collections.abc import Sequence
from enum import Enum
from pathlib import Path

from condainspect import analysis, analyzer, graph, vulnerabilities
from condainspect.exporters import ExportFormat, export_analysis
from condainspect.models import EnvironmentAnalysis

log = logging.getLogger(__name__)

PROG = "conda-env-inspect"
VERSION = "0.1.0"
DEFAULT_FILE = "environment.yml"
DEFAULT_GRAPH_FILE = "dependency_graph.dot"

_DEFAULT_COMMAND = "inspect"
_COMMANDS = frozenset(
    {"analyze", "export", "graph", "recommend", "vulnerabilities", _DEFAULT_COMMAND}
)
_VALUE_OPTIONS = frozenset({"-f", "--format", "-o", "--output", "-G", "--graph-output"})
_FLAG_LETTERS = frozenset("cpgr")
_VALUE_LETTERS = frozenset("foG")
_GRAPH_NOTE = (
    "Note: Generated a basic dependency graph without all relationships. "
    "For complete dependency analysis, please run in an environment with conda installed."
)


class CliError(RuntimeError):
    """Raised when a command cannot complete."""


class OutputFormat(str, Enum):
    """Output formats accepted on the command line."""

    TEXT = "text"
    JSON = "json"
    YAML = "yaml"
    CSV = "csv"
    MARKDOWN = "markdown"
    TOML = "toml"

    def __str__(self) -> str:
        return self.value


_FORMAT_MAP = {
    OutputFormat.TEXT: ExportFormat.TEXT,
    OutputFormat.JSON: ExportFormat.JSON,
    OutputFormat.MARKDOWN: ExportFormat.MARKDOWN,
    OutputFormat.CSV: ExportFormat.CSV,
}


def convert_format(output_format: OutputFormat | str) -> ExportFormat:
    """Map a command-line format to an export format; unsupported ones become text."""
    return _FORMAT_MAP.get(OutputFormat(output_format), ExportFormat.TEXT)


def _quoted(path: str | os.PathLike) -> str:
    return f'"{os.fspath(path)}"'


def _add_file(parser: argparse.ArgumentParser, help_text: str) -> None:
    parser.add_argument(
        "file", nargs="?", type=Path, default=Path(DEFAULT_FILE), help=help_text
    )


def _add_top_level_options(parser: argparse.ArgumentParser, suppress: bool) -> None:
    def default(value: object) -> object:
        return argparse.SUPPRESS if suppress else value

    parser.add_argument(
        "-f",
        "--format",
        type=OutputFormat,
        choices=list(OutputFormat),
        default=default(OutputFormat.TEXT),
        help="format for output data",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=default(None),
        help="output file path (stdout when not given)",
    )
    parser.add_argument(
        "-c",
        "--check-outdated",
        action="store_true",
        default=default(False),
        help="check for outdated packages",
    )
    parser.add_argument(
        "-p",
        "--flag-pinned",
        action="store_true",
        default=default(False),
        help="flag pinned packages in the output",
    )
    parser.add_argument(
        "-g",
        "--generate-graph",
        action="store_true",
        default=default(False),
        help="generate a dependency graph",
    )
    parser.add_argument(
        "-G",
        "--graph-output",
        type=Path,
        default=default(None),
        help="output path for the dependency graph (required with --generate-graph)",
    )
    parser.add_argument(
        "-r",
        "--generate-recommendations",
        action="store_true",
        default=default(False),
        help="generate optimization recommendations",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with its subcommands."""
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="A tool for analyzing Conda environment files",
        allow_abbrev=False,
    )
    parser.add_argument("-V", "--version", action="version", version=f"{PROG} {VERSION}")
    _add_top_level_options(parser, suppress=False)
    parser.set_defaults(file=Path(DEFAULT_FILE), command=None)

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    # Added without help, so it stays out of the command listing.
    default = subparsers.add_parser(_DEFAULT_COMMAND, allow_abbrev=False)
    _add_file(default, "path to the Conda environment file")
    _add_top_level_options(default, suppress=True)

    analyze = subparsers.add_parser(
        "analyze", help="analyze conda environment file", allow_abbrev=False
    )
    _add_file(analyze, "path to the Conda environment file")
    analyze.add_argument("-c", "--check-outdated", action="store_true")
    analyze.add_argument("-p", "--flag-pinned", action="store_true")
    analyze.add_argument("-g", "--generate-graph", action="store_true")
    analyze.add_argument("-r", "--generate-recommendations", action="store_true")
    analyze.add_argument("-G", "--graph-output", type=Path, default=None)

    export = subparsers.add_parser(
        "export", help="export environment analysis in various formats", allow_abbrev=False
    )
    _add_file(export, "path to the Conda environment file")
    export.add_argument(
        "-f", "--format", type=OutputFormat, choices=list(OutputFormat),
        default=OutputFormat.TEXT,
    )
    export.add_argument("-o", "--output", type=Path, default=None)

    graph_cmd = subparsers.add_parser(
        "graph", help="generate dependency graph", allow_abbrev=False
    )
    _add_file(graph_cmd, "path to the Conda environment file")
    graph_cmd.add_argument("-o", "--output", type=Path, default=Path(DEFAULT_GRAPH_FILE))
    graph_cmd.add_argument("-a", "--advanced", action="store_true")

    recommend = subparsers.add_parser(
        "recommend",
        help="generate optimization recommendations for environment",
        allow_abbrev=False,
    )
    _add_file(recommend, "path to the Conda environment file")
    recommend.add_argument("-c", "--check-outdated", action="store_true")

    vulns = subparsers.add_parser(
        "vulnerabilities",
        help="check for known vulnerabilities in packages",
        allow_abbrev=False,
    )
    _add_file(vulns, "path to the Conda environment file")
    return parser


def _takes_value(token: str) -> bool:
    if token in _VALUE_OPTIONS:
        return True
    if token.startswith("-") and not token.startswith("--") and len(token) > 2:
        flags, last = token[1:-1], token[-1]
        return all(char in _FLAG_LETTERS for char in flags) and last in _VALUE_LETTERS
    return False


def _with_command(argv: Sequence[str]) -> list[str]:
    """Insert the implicit command where no subcommand is named."""
    args = list(argv)
    expect_value = False
    for index, token in enumerate(args):
        if expect_value:
            expect_value = False
            continue
        if token == "--" or token == "-" or not token.startswith("-"):
            if token in _COMMANDS:
                return args
            return [*args[:index], _DEFAULT_COMMAND, *args[index:]]
        expect_value = _takes_value(token)
    return [*args, _DEFAULT_COMMAND]


def check_conda_availability() -> str | None:
    """Report whether conda can be run; return its version text, or None."""
    try:
        completed = subprocess.run(
            ["conda", "--version"], capture_output=True, text=True, check=False
        )
    except OSError:
        log.warning(
            "Conda is not available in the system PATH. "
            "Some features will use fallback mechanisms."
        )
        log.warning(
            "For complete functionality, please install conda and ensure it's in your PATH."
        )
        return None
    if completed.returncode == 0:
        version = (completed.stdout or "").strip()
        log.info("Found conda: %s", version)
        return version
    log.warning("Conda is installed but returned an error: %s", completed.stderr)
    return None


def _analyze(
    file: Path, check_outdated: bool, flag_pinned: bool, parallel: bool = False
) -> EnvironmentAnalysis:
    run = analyzer.analyze_environment_parallel if parallel else analyzer.analyze_environment
    try:
        return run(file, check_outdated, flag_pinned)
    except Exception as exc:
        raise CliError(
            f"Failed to analyze environment file: {_quoted(file)}: {exc}"
        ) from exc


def _export(result: EnvironmentAnalysis, fmt: OutputFormat, output: Path | None) -> None:
    try:
        export_analysis(result, convert_format(fmt), output)
    except (OSError, ValueError) as exc:
        raise CliError(f"Failed to export analysis: {exc}") from exc


def _write_basic_graph(file: Path, output: Path) -> None:
    try:
        analyzer.generate_dependency_graph(file, output)
    except Exception as exc:
        log.warning("Failed to generate full dependency graph: %s", exc)
        print(_GRAPH_NOTE)
    else:
        print(f"Dependency graph saved to: {_quoted(output)}")


def _graph_if_requested(args: argparse.Namespace) -> None:
    if not args.generate_graph:
        return
    if args.graph_output is None:
        log.warning("No output path specified for dependency graph")
        raise CliError("No output path specified for dependency graph")
    log.info("Generating dependency graph: %s", _quoted(args.graph_output))
    _write_basic_graph(args.file, args.graph_output)


def _run_analysis(args: argparse.Namespace) -> None:
    log.info("Analyzing environment file: %s", _quoted(args.file))
    result = _analyze(
        args.file, args.check_outdated, args.flag_pinned, parallel=args.check_outdated
    )
    _graph_if_requested(args)
    log.info("Exporting analysis results")
    _export(result, args.format, args.output)
    log.info("Analysis complete!")


def _run_export(args: argparse.Namespace) -> None:
    log.info("Exporting environment file: %s", _quoted(args.file))
    result = _analyze(args.file, False, False)
    log.info("Exporting in format: %s", args.format)
    _export(result, args.format, args.output)
    log.info("Export complete!")


def _run_graph(args: argparse.Namespace) -> None:
    log.info("Generating dependency graph for: %s", _quoted(args.file))
    result = _analyze(args.file, False, False)
    if args.advanced:
        deps = analysis.get_real_package_dependencies(result.packages)
        advanced = graph.create_advanced_dependency_graph(result.packages, deps)
        try:
            graph.export_advanced_dependency_graph(advanced, args.output)
        except OSError as exc:
            raise CliError(f"Failed to generate advanced dependency graph: {exc}") from exc
        print(f"Advanced dependency graph saved to: {_quoted(args.output)}")
    else:
        _write_basic_graph(args.file, args.output)
    log.info("Graph generation complete!")


def _run_recommend(args: argparse.Namespace) -> None:
    log.info("Generating recommendations for: %s", _quoted(args.file))
    result = _analyze(args.file, args.check_outdated, True)
    if not result.recommendations:
        print("No recommendations available for this environment.")
        return
    print(f"Recommendations for environment: {_quoted(args.file)}")
    for number, recommendation in enumerate(result.recommendations, start=1):
        print(f"{number}. {recommendation}")


def _run_vulnerabilities(args: argparse.Namespace) -> None:
    log.info("Checking for vulnerabilities in: %s", _quoted(args.file))
    result = _analyze(args.file, True, False)
    found = vulnerabilities.find_vulnerabilities(result.packages)
    if not found:
        print("No known vulnerabilities found in the environment.")
        return
    print(f"Found {len(found)} potential security vulnerabilities:")
    for number, (name, version, description) in enumerate(found, start=1):
        print(f"{number}. {name} {version} - {description}")


_HANDLERS = {
    _DEFAULT_COMMAND: _run_analysis,
    "analyze": _run_analysis,
    "export": _run_export,
    "graph": _run_graph,
    "recommend": _run_recommend,
    "vulnerabilities": _run_vulnerabilities,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line; return the process exit status."""
    started = time.monotonic()
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    log.info("Starting %s v%s", PROG, VERSION)
    check_conda_availability()

    raw = sys.argv[1:] if argv is None else argv
    args = build_parser().parse_args(_with_command(raw))
    log.debug("Parsed command-line arguments: %s", args)

    handler = _HANDLERS[args.command or _DEFAULT_COMMAND]
    try:
        handler(args)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    log.info("Completed successfully in %.2fs", time.monotonic() - started)
    return 0


if __name__ == "__main__":
    sys.exit(main())