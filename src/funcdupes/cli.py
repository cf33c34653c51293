"""Command-line interface for funcdupes."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from funcdupes import __version__
from funcdupes.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_FINGERPRINT_BITS,
    DEFAULT_LSH_BANDS,
    DEFAULT_MAJORITY_THRESHOLD,
    DEFAULT_MIN_GROUP_SIZE,
    DEFAULT_MIN_LINES,
    DEFAULT_MODEL,
    DEFAULT_THRESHOLD,
    DEFAULT_WEIGHTED_THRESHOLD,
    DETECTOR_IDS,
)
from funcdupes.errors import FuncdupesError
from funcdupes.extractor import DEFAULT_EXCLUDE_PATTERNS, extract_functions
from funcdupes.manager import DetectionReport, SimilarityManager
from funcdupes.models import (
    ConsensusStrategy,
    DetectionOptions,
    FunctionInfo,
    IntersectionStrategy,
    MajorityStrategy,
    SimilarityGroup,
    UnionStrategy,
    WeightedStrategy,
)
from funcdupes.semantic import SentenceTransformerEmbeddingProvider

DEFAULT_OUTPUT_WIDTH = 160
MIN_OUTPUT_WIDTH = 80
DEFAULT_TABLE_ROWS = 20

console = Console(width=DEFAULT_OUTPUT_WIDTH)

_NOISY_EXTERNAL_LOGGERS = (
    "httpx",
    "huggingface_hub",
    "sentence_transformers",
    "torch",
    "transformers",
    "urllib3",
)


class _FuncdupesLogFilter(logging.Filter):
    """Filter log records so non-funcdupes INFO chatter is hidden by default."""

    def __init__(self, *, include_external_info: bool) -> None:
        super().__init__()
        self.include_external_info = include_external_info

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("funcdupes"):
            return True
        if self.include_external_info:
            return True
        return record.levelno >= logging.WARNING


def _set_console(output_width: int) -> None:
    """Set global console used by all rich output helpers."""
    global console
    console = Console(width=output_width)


def setup_logging(verbose: bool = False, json_output: bool = False) -> None:
    """Configure logging with rich handler.

    JSON runs log warnings only, on stderr, so stdout stays machine-readable.
    """
    if verbose:
        level = logging.DEBUG
    else:
        level = logging.WARNING if json_output else logging.INFO
    log_console = Console(stderr=True, width=console.width) if json_output else console
    handler = RichHandler(console=log_console, show_time=False, show_path=False)
    handler.addFilter(_FuncdupesLogFilter(include_external_info=verbose))
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[handler],
        force=True,
    )
    quiet_level = logging.DEBUG if verbose else logging.WARNING
    for logger_name in _NOISY_EXTERNAL_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)


def _validate_threshold(_ctx: click.Context, _param: click.Parameter, value: float) -> float:
    """Validate a threshold in the ``(0.0, 1.0]`` range.

    :raises click.BadParameter: When value is outside the allowed range.
    """
    if not 0.0 < value <= 1.0:
        raise click.BadParameter("must be in (0.0, 1.0]")
    return value


def _validate_positive_int(_ctx: click.Context, _param: click.Parameter, value: int) -> int:
    if value <= 0:
        raise click.BadParameter("must be > 0")
    return value


def _validate_non_negative_int(_ctx: click.Context, _param: click.Parameter, value: int) -> int:
    if value < 0:
        raise click.BadParameter("must be >= 0")
    return value


def _validate_output_width(_ctx: click.Context, _param: click.Parameter, value: int) -> int:
    """Validate output width for rich table rendering.

    :raises click.BadParameter: When value is below the minimum width.
    """
    if value < MIN_OUTPUT_WIDTH:
        raise click.BadParameter(f"must be >= {MIN_OUTPUT_WIDTH}")
    return value


def _parse_float(text: str, label: str) -> float:
    try:
        return float(text)
    except ValueError as exc:
        raise ValueError(f"{label} must be a number, got {text!r}") from exc


def parse_consensus(text: str) -> ConsensusStrategy:
    """Parse a compact consensus strategy description.

    Accepted forms: ``union``, ``intersection``, ``majority``, ``majority:0.6``,
    ``weighted:exact-hash=0.5,lsh-fingerprint=0.5`` and
    ``weighted:0.7:exact-hash=0.5,lsh-fingerprint=0.5``.

    :param text: Strategy description.
    :return: Strategy value.
    :raises ValueError: If the description is malformed.
    """
    kind, _, rest = text.strip().partition(":")
    kind = kind.lower()

    if kind == "union" and not rest:
        return UnionStrategy()
    if kind == "intersection" and not rest:
        return IntersectionStrategy()
    if kind == "majority":
        if not rest:
            return MajorityStrategy(DEFAULT_MAJORITY_THRESHOLD)
        return MajorityStrategy(_parse_float(rest, "majority threshold"))
    if kind == "weighted":
        threshold = DEFAULT_WEIGHTED_THRESHOLD
        head, _, tail = rest.partition(":")
        if tail:
            threshold = _parse_float(head, "weighted threshold")
            rest = tail
        weights: dict[str, float] = {}
        for item in filter(None, (part.strip() for part in rest.split(","))):
            detector, separator, weight = item.partition("=")
            if not separator:
                raise ValueError(f"Expected detector=weight, got {item!r}")
            weights[detector.strip().lower()] = _parse_float(weight, f"weight for {detector}")
        if not weights:
            raise ValueError("weighted consensus needs at least one detector=weight entry")
        return WeightedStrategy(weights, threshold)

    raise ValueError(
        f"Unknown consensus strategy {text!r}; expected union, intersection, "
        "majority[:t], or weighted[:t]:detector=weight,..."
    )


def _consensus_callback(_ctx: click.Context, _param: click.Parameter, value: str) -> ConsensusStrategy:
    try:
        return parse_consensus(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc


def _detectors_callback(
    _ctx: click.Context, _param: click.Parameter, value: str | None
) -> tuple[str, ...] | None:
    if value is None:
        return None
    names = tuple(name.strip().lower() for name in value.split(",") if name.strip())
    unknown = [name for name in names if name not in DETECTOR_IDS]
    if not names or unknown:
        raise click.BadParameter(
            f"unknown detector(s) {', '.join(unknown) or value!r}; choose from {', '.join(DETECTOR_IDS)}"
        )
    return names


def format_location(function: FunctionInfo | None, function_id: str) -> str:
    """Format ``file:line`` for table rendering."""
    if function is None:
        return function_id
    return f"{function.file_path.name}:{function.start_line}"


def truncate_source(source: str, max_lines: int = 5) -> str:
    """Truncate source code for compact display."""
    lines = source.strip().split("\n")
    if len(lines) <= max_lines:
        return source.strip()
    return "\n".join(lines[:max_lines]) + f"\n... ({len(lines) - max_lines} more lines)"


def print_summary(report: DetectionReport) -> None:
    """Print run summary."""
    console.print()

    summary = Table(title="Analysis Summary", show_header=False, box=None)
    summary.add_column(style="bold cyan", no_wrap=True)
    summary.add_column(style="white", no_wrap=True)

    summary.add_row("Functions compared", str(report.function_count))
    summary.add_row("Skipped functions", str(len(report.skipped)))
    summary.add_row("Detectors", ", ".join(report.enabled_detectors) or "-")
    for name, count in report.detector_pair_counts.items():
        summary.add_row(f"  {name}", f"{count} pairs")
    if report.degraded_detectors:
        summary.add_row("Degraded detectors", ", ".join(report.degraded_detectors))
    summary.add_row("", "")
    summary.add_row("Similarity groups", str(len(report.groups)))

    console.print(summary)
    console.print()


def print_groups(
    groups: list[SimilarityGroup],
    functions: dict[str, FunctionInfo],
    show_source: bool = False,
    max_items: int | None = DEFAULT_TABLE_ROWS,
) -> None:
    """Print similarity groups in a table.

    :param groups: Groups in priority order.
    :param functions: Extracted functions keyed by id, for names and locations.
    :param show_source: Whether to render source panels for each group.
    :param max_items: Optional max rows.
    """
    if not groups:
        return

    console.print(f"\n[bold yellow]Similar Functions[/bold yellow] ({len(groups)} groups)")

    def new_table() -> Table:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Similarity", style="green", width=10, no_wrap=True)
        table.add_column("Confidence", style="green", width=10, no_wrap=True)
        table.add_column("Impact", style="magenta", no_wrap=True)
        table.add_column("Members", style="cyan")
        table.add_column("Detector", style="dim", no_wrap=True)
        return table

    table = new_table()
    visible = groups if max_items is None else groups[:max_items]
    for group in visible:
        members = "\n".join(
            f"{functions[member].display_name if member in functions else member} "
            f"[dim]{format_location(functions.get(member), member)}[/dim]"
            for member in group.members
        )
        confidence = f"{group.confidence:.2%}" if group.confidence is not None else "-"
        table.add_row(
            f"{group.similarity:.2%}",
            confidence,
            group.refactoring_impact,
            members,
            group.detector,
        )
        if show_source:
            console.print(table)
            for member in group.members:
                function = functions.get(member)
                if function is None or not function.source:
                    continue
                console.print(
                    Panel(
                        Syntax(truncate_source(function.source), "python", theme="monokai"),
                        title=f"[cyan]{function.qualified_name or member}[/cyan]",
                        border_style="dim",
                    )
                )
            table = new_table()

    if not show_source:
        console.print(table)

    if max_items is not None and len(groups) > max_items:
        console.print(f"[dim]... and {len(groups) - max_items} more[/dim]")


def print_check_json(report: DetectionReport) -> None:
    """Output check results as JSON."""
    output: dict[str, Any] = {
        "summary": {
            "functions": report.function_count,
            "groups": len(report.groups),
            "skipped": len(report.skipped),
        },
        **report.to_dict(),
    }
    print(json.dumps(output, indent=2, sort_keys=True, default=str))


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, prog_name="funcdupes")
def cli() -> None:
    """Find similar and duplicated Python functions."""


@cli.command("check", help="Find groups of similar functions")
@click.argument("path", type=click.Path(path_type=Path))
@click.option(
    "-t",
    "--threshold",
    type=float,
    default=DEFAULT_THRESHOLD,
    show_default=True,
    callback=_validate_threshold,
    help="Minimum similarity for a pair or group to be reported",
)
@click.option(
    "--min-lines",
    type=int,
    default=DEFAULT_MIN_LINES,
    show_default=True,
    callback=_validate_non_negative_int,
    help="Skip functions with fewer lines of code",
)
@click.option(
    "--min-group-size",
    type=int,
    default=DEFAULT_MIN_GROUP_SIZE,
    show_default=True,
    help="Smallest group reported",
)
@click.option(
    "--cross-file/--same-file",
    default=True,
    show_default=True,
    help="Compare functions across files, or only within a file",
)
@click.option(
    "--detectors",
    default=None,
    callback=_detectors_callback,
    help=f"Comma-separated detectors to run ({', '.join(DETECTOR_IDS)}); default: all available",
)
@click.option(
    "--consensus",
    default="union",
    show_default=True,
    callback=_consensus_callback,
    help="union | intersection | majority[:t] | weighted[:t]:detector=weight,...",
)
@click.option("--semantic", is_flag=True, help="Compute embeddings and enable semantic-ann")
@click.option(
    "--model",
    default=DEFAULT_MODEL,
    show_default=True,
    help="Embedding model used with --semantic",
)
@click.option(
    "--batch-size",
    type=int,
    default=DEFAULT_BATCH_SIZE,
    show_default=True,
    callback=_validate_positive_int,
    help="Batch size for embeddings",
)
@click.option(
    "--exclude",
    multiple=True,
    help="Glob patterns to exclude (repeat option for multiple patterns)",
)
@click.option("--no-private", is_flag=True, help="Exclude private functions/classes")
@click.option("--json", "as_json", is_flag=True, help="Output JSON instead of rich tables")
@click.option("--show-source", is_flag=True, help="Show source code snippets")
@click.option("--full-table", is_flag=True, help="Show all rows in terminal tables")
@click.option(
    "--output-width",
    type=int,
    default=DEFAULT_OUTPUT_WIDTH,
    show_default=True,
    callback=_validate_output_width,
    help="Width used for rich terminal rendering",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def check_command(
    path: Path,
    threshold: float,
    min_lines: int,
    min_group_size: int,
    cross_file: bool,
    detectors: tuple[str, ...] | None,
    consensus: ConsensusStrategy,
    semantic: bool,
    model: str,
    batch_size: int,
    exclude: tuple[str, ...],
    no_private: bool,
    as_json: bool,
    show_source: bool,
    full_table: bool,
    output_width: int,
    verbose: bool,
) -> None:
    """Run similarity detection over a directory or file.

    Exits with 1 when groups are found (or on errors), 0 otherwise.
    """
    _set_console(output_width)
    setup_logging(verbose, json_output=as_json)

    try:
        options = DetectionOptions(
            threshold=threshold,
            min_lines=min_lines,
            cross_file=cross_file,
            enabled_detectors=detectors,
            consensus=consensus,
            min_group_size=min_group_size,
        )
    except FuncdupesError as exc:
        console.print(f"[red]Invalid options:[/red] {exc}")
        raise click.exceptions.Exit(1) from exc

    provider = (
        SentenceTransformerEmbeddingProvider(model_name=model, batch_size=batch_size)
        if semantic
        else None
    )

    try:
        functions = extract_functions(
            path,
            exclude_patterns=list(exclude) or None,
            include_private=not no_private,
        )
        report = SimilarityManager(embedding_provider=provider).run(functions, options)
    except FileNotFoundError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise click.exceptions.Exit(1) from exc
    except Exception as exc:
        console.print(f"[red]Error during analysis:[/red] {exc}")
        if verbose:
            console.print_exception()
        raise click.exceptions.Exit(1) from exc

    if as_json:
        print_check_json(report)
    else:
        print_summary(report)
        print_groups(
            report.groups,
            {function.function_id: function for function in functions},
            show_source=show_source,
            max_items=None if full_table else DEFAULT_TABLE_ROWS,
        )
        for warning in report.warnings:
            console.print(f"[yellow]Warning:[/yellow] {warning}")

    raise click.exceptions.Exit(1 if report.groups else 0)


@cli.command("info", help="Print tool defaults")
def info_command() -> None:
    """Print version and default settings."""
    click.echo(f"funcdupes {__version__}")
    click.echo(f"Detectors: {', '.join(DETECTOR_IDS)}")
    click.echo(f"Default threshold: {DEFAULT_THRESHOLD}")
    click.echo(f"Default min_lines: {DEFAULT_MIN_LINES}")
    click.echo("Default consensus: union")
    click.echo(f"Fingerprint bits: {DEFAULT_FINGERPRINT_BITS}, LSH bands: {DEFAULT_LSH_BANDS}")
    click.echo(f"Default embedding model: {DEFAULT_MODEL}")
    click.echo(f"Default exclude patterns: {', '.join(DEFAULT_EXCLUDE_PATTERNS)}")
    click.echo(f"Default output width: {DEFAULT_OUTPUT_WIDTH}")
    click.echo("Run with --help for CLI usage")


def main() -> int:
    """CLI program entrypoint.

    :return: Process exit code from click dispatch.
    """
    argv = sys.argv[1:]

    try:
        result = cli.main(args=argv, prog_name="funcdupes", standalone_mode=False)
        if isinstance(result, int):
            return result
    except click.exceptions.Exit as exc:
        return int(exc.exit_code)
    except click.ClickException as exc:
        exc.show()
        return exc.exit_code
    except click.Abort:
        click.echo("Aborted!", err=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
