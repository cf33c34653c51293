from __future__ import annotations

import ast
from pathlib import Path
from textwrap import dedent
from typing import Any, Callable

from funcdupes.extractor import FunctionExtractor
from funcdupes.manager import DetectionReport
from funcdupes.models import FunctionInfo, FunctionMetrics, FunctionRepresentation
from funcdupes.representation import RepresentationBuilder


def write_source_file(tmp_path: Path, source: str, filename: str = "sample.py") -> Path:
    path = tmp_path / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dedent(source).strip() + "\n")
    return path


def extract_functions_from_source(
    tmp_path: Path,
    source: str,
    *,
    filename: str = "sample.py",
    include_private: bool = True,
    exclude_patterns: list[str] | None = None,
) -> list[FunctionInfo]:
    path = write_source_file(tmp_path, source, filename)
    extractor = FunctionExtractor(
        tmp_path, exclude_patterns=exclude_patterns, include_private=include_private
    )
    return list(extractor.extract_from_file(path))


def make_function(
    source: str,
    *,
    function_id: str | None = None,
    file_path: str | Path = "module.py",
    start_line: int = 1,
    embedding: Any = None,
    lines_of_code: int | None = None,
) -> FunctionInfo:
    """Build a ``FunctionInfo`` from the first function defined in ``source``."""
    text = dedent(source).strip()
    node = next(
        item
        for item in ast.parse(text).body
        if isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef))
    )
    line_count = len(text.splitlines())
    return FunctionInfo(
        function_id=function_id or f"{Path(file_path).as_posix()}::{node.name}",
        file_path=Path(file_path),
        start_line=start_line,
        end_line=start_line + line_count - 1,
        ast_node=node,
        metrics=FunctionMetrics(lines_of_code=lines_of_code or line_count),
        name=node.name,
        source=text,
        embedding=embedding,
    )


def make_functions(*sources: str, file_path: str | Path = "module.py") -> list[FunctionInfo]:
    """Build non-overlapping ``FunctionInfo`` records that share one file."""
    functions: list[FunctionInfo] = []
    start_line = 1
    for source in sources:
        function = make_function(source, file_path=file_path, start_line=start_line)
        functions.append(function)
        start_line = function.end_line + 2
    return functions


def build_representations(
    functions: list[FunctionInfo], **builder_kwargs: Any
) -> list[FunctionRepresentation]:
    return RepresentationBuilder(**builder_kwargs).build(functions).representations


ADD_PAIR_SOURCE = dedent(
    """
    def add_all(values):
        total = 0
        for value in values:
            if value > 0:
                total += value
        return total
    """
)

RENAMED_ADD_PAIR_SOURCE = dedent(
    """
    def sum_positive(items):
        acc = 0
        for item in items:
            if item > 0:
                acc += item
        return acc
    """
)

UNRELATED_SOURCE = dedent(
    """
    def render_report(rows, title, width=80, *, sort=False):
        lines = [title.center(width)]
        if sort:
            rows = sorted(rows)
        for row in rows:
            try:
                text = str(row)
            except ValueError:
                text = "?"
            lines.append(text.ljust(width))
        with open("report.txt", "w") as handle:
            handle.write("\\n".join(lines))
        return len(lines)
    """
)


def patch_cli_manager(
    monkeypatch: Any,
    cli_module: Any,
    *,
    report: DetectionReport | Callable[[], DetectionReport],
    captured_options: list[Any] | None = None,
    captured_providers: list[Any] | None = None,
) -> None:
    """Patch CLI manager construction with a configurable test double."""

    class DummyManager:
        def __init__(self, *args: Any, embedding_provider: Any = None, **kwargs: Any) -> None:
            if captured_providers is not None:
                captured_providers.append(embedding_provider)

        def run(self, functions: Any, options: Any = None, cancel_event: Any = None):
            if captured_options is not None:
                captured_options.append(options)
            return report() if callable(report) else report

    monkeypatch.setattr(cli_module, "SimilarityManager", DummyManager)
