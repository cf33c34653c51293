"""Python source adapter producing ``FunctionInfo`` records for the detection core."""

from __future__ import annotations

import ast
import logging
import textwrap
from collections.abc import Iterator
from fnmatch import fnmatch
from pathlib import Path

from funcdupes.canonical import FunctionNode, cyclomatic_complexity, tokenize_source
from funcdupes.models import FunctionInfo, FunctionMetrics, FunctionSignature

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_PATTERNS = ("**/test_*", "**/*_test.py", "**/tests/**")


def _annotation(node: ast.expr | None) -> str:
    return ast.unparse(node) if node is not None else ""


def function_signature(node: FunctionNode) -> FunctionSignature:
    """Read the name and annotation texts of a function definition."""
    arguments = node.args
    parameter_types = [
        _annotation(arg.annotation)
        for arg in (*arguments.posonlyargs, *arguments.args, *arguments.kwonlyargs)
    ]
    if arguments.vararg is not None:
        parameter_types.append("*" + _annotation(arguments.vararg.annotation))
    if arguments.kwarg is not None:
        parameter_types.append("**" + _annotation(arguments.kwarg.annotation))
    return_type = _annotation(node.returns) or None
    return FunctionSignature(node.name, tuple(parameter_types), return_type)


class _FunctionCollector(ast.NodeVisitor):
    """Collect functions with deterministic scope tracking."""

    def __init__(self, extractor: "FunctionExtractor", file_path: Path, source: str) -> None:
        self.extractor = extractor
        self.file_path = file_path
        self.lines = source.splitlines(keepends=True)
        self.module_name = extractor._get_module_name(file_path)
        self.relative_path = extractor._relative(file_path)
        self.functions: list[FunctionInfo] = []
        # Enclosing class and function names, outermost first
        self.scope: list[str] = []

    def visit_FunctionDef(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        if self.extractor._should_emit(node.name):
            self.functions.append(self._emit(node))
        self.scope.append(node.name)
        self.generic_visit(node)
        self.scope.pop()

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        if not self.extractor._should_emit(node.name):
            logger.debug("Skipping private class %s in %s", node.name, self.file_path)
            return
        self.scope.append(node.name)
        self.generic_visit(node)
        self.scope.pop()

    def _emit(self, node: FunctionNode) -> FunctionInfo:
        end_line = node.end_lineno or node.lineno
        source = "".join(self.lines[node.lineno - 1 : end_line])
        qualified = ".".join(part for part in (self.module_name, *self.scope, node.name) if part)
        local_name = ".".join((*self.scope, node.name))
        return FunctionInfo(
            function_id=f"{self.relative_path}::{local_name}",
            file_path=self.file_path,
            start_line=node.lineno,
            end_line=end_line,
            ast_node=node,
            tokens=tokenize_source(textwrap.dedent(source)),
            signature=function_signature(node),
            metrics=FunctionMetrics(
                lines_of_code=sum(1 for line in source.splitlines() if line.strip()),
                cyclomatic_complexity=cyclomatic_complexity(node),
            ),
            name=node.name,
            qualified_name=qualified,
            source=source,
        )


class FunctionExtractor:
    """Extract every function and method from a directory of Python files."""

    def __init__(
        self,
        root: Path,
        exclude_patterns: list[str] | None = None,
        include_private: bool = True,
    ) -> None:
        self.root = Path(root).resolve()
        self.exclude_patterns = (
            list(exclude_patterns) if exclude_patterns is not None else list(DEFAULT_EXCLUDE_PATTERNS)
        )
        self.include_private = include_private

    def _relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    def _should_exclude(self, path: Path) -> bool:
        """Check if path matches any exclude pattern."""
        rel_path = self._relative(path)
        return any(fnmatch(rel_path, pattern) for pattern in self.exclude_patterns)

    def _get_module_name(self, file_path: Path) -> str:
        """Convert file path to module name."""
        parts = list(Path(self._relative(file_path)).parts)
        if parts and parts[-1] == "__init__.py":
            parts = parts[:-1]
        elif parts:
            parts[-1] = parts[-1].removesuffix(".py")
        return ".".join(parts)

    def _should_emit(self, name: str) -> bool:
        if name.startswith("_") and not name.startswith("__"):
            return self.include_private
        return True

    def extract_from_file(self, file_path: Path) -> Iterator[FunctionInfo]:
        """Extract all functions from a single file."""
        try:
            source = file_path.read_text(encoding="utf-8")
            tree = ast.parse(source, filename=str(file_path))
        except (SyntaxError, UnicodeDecodeError) as e:
            logger.warning(f"Could not parse {file_path}: {e}")
            return

        collector = _FunctionCollector(self, file_path, source)
        collector.visit(tree)
        yield from collector.functions

    def extract_all(self) -> list[FunctionInfo]:
        """Extract all functions under the root directory, in path order."""
        functions: list[FunctionInfo] = []
        for py_file in sorted(self.root.rglob("*.py")):
            if self._should_exclude(py_file):
                logger.debug(f"Excluding {py_file}")
                continue
            functions.extend(self.extract_from_file(py_file))
        return functions


def extract_functions(
    path: Path | str,
    exclude_patterns: list[str] | None = None,
    include_private: bool = True,
) -> list[FunctionInfo]:
    """
    Extract functions from a directory or a single Python file.

    :param path: Directory or ``.py`` file.
    :param exclude_patterns: Glob patterns (relative to the root) to skip.
    :param include_private: Whether ``_private`` functions and classes are included.
    :return: Function records ready for ``detect_similarities``.
    :raises FileNotFoundError: If ``path`` does not exist.
    """
    path = Path(path).resolve()
    if not path.exists():
        raise FileNotFoundError(f"Path does not exist: {path}")

    logger.info(f"Extracting functions from {path}")
    if path.is_file():
        extractor = FunctionExtractor(path.parent, exclude_patterns, include_private)
        functions = list(extractor.extract_from_file(path))
    else:
        extractor = FunctionExtractor(path, exclude_patterns, include_private)
        functions = extractor.extract_all()
    logger.info(f"Extracted {len(functions)} functions")
    return functions
