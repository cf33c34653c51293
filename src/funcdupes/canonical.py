"""Alpha-renaming canonicalization and structural Merkle hashing for function ASTs.

Two functions that differ only in the names of their local bindings, their
string literals, docstrings, annotations, or decorators produce the same
structural hash and the same canonical token stream.
"""

from __future__ import annotations

import ast
import hashlib
import keyword
import re
import tokenize
from collections.abc import Iterable, Sequence
from io import StringIO

from funcdupes.models import StructuralFeatures

FunctionNode = ast.FunctionDef | ast.AsyncFunctionDef

STRING_PLACEHOLDER = "<str>"
BYTES_PLACEHOLDER = "<bytes>"
SELF_PLACEHOLDER = "<fn>"
STRUCTURAL_HASH_LENGTH = 32

# Type-level and decoration fields never contribute to structure
_SKIPPED_FIELDS = frozenset({"annotation", "returns", "type_comment", "decorator_list", "type_params"})
_IDENTIFIER_FIELDS = frozenset({"id", "arg", "name", "asname", "rest"})
_STRING_TOKEN = re.compile(r"^[rRbBuUfF]{0,2}['\"]")
_SKIPPED_TOKEN_TYPES = (
    tokenize.COMMENT,
    tokenize.NL,
    tokenize.NEWLINE,
    tokenize.INDENT,
    tokenize.DEDENT,
    tokenize.ENCODING,
    tokenize.ENDMARKER,
)


def function_root(node: ast.AST | None) -> FunctionNode | None:
    """Return the function definition represented by ``node``.

    Accepts a function definition directly, or a module whose only
    statement is a function definition (optionally after a docstring).

    :param node: Parsed AST node.
    :return: Function node, or ``None`` when ``node`` does not describe a function.
    """
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
        return node
    if isinstance(node, ast.Module):
        body = _strip_docstring(node.body)
        if len(body) == 1 and isinstance(body[0], (ast.FunctionDef, ast.AsyncFunctionDef)):
            return body[0]
    return None


def _is_docstring(statement: ast.stmt) -> bool:
    return (
        isinstance(statement, ast.Expr)
        and isinstance(statement.value, ast.Constant)
        and isinstance(statement.value.value, str)
    )


def _strip_docstring(body: list[ast.stmt]) -> list[ast.stmt]:
    if body and _is_docstring(body[0]):
        return body[1:]
    return body


class _LocalNameCollector(ast.NodeVisitor):
    """Collect identifiers bound inside a function body."""

    def __init__(self, root: FunctionNode) -> None:
        self._root = root
        self.bound: set[str] = set()
        self.declared_outer: set[str] = set()

    def visit_arg(self, node: ast.arg) -> None:
        self.bound.add(node.arg)
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if isinstance(node.ctx, (ast.Store, ast.Del)):
            self.bound.add(node.id)

    def visit_FunctionDef(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        if node is not self._root:
            self.bound.add(node.name)
        self.generic_visit(node)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self.bound.add(node.name)
        self.generic_visit(node)

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.name:
            self.bound.add(node.name)
        self.generic_visit(node)

    def visit_alias(self, node: ast.alias) -> None:
        if node.asname:
            self.bound.add(node.asname)

    def visit_Global(self, node: ast.Global) -> None:
        self.declared_outer.update(node.names)

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self.declared_outer.update(node.names)

    def visit_MatchAs(self, node: ast.MatchAs) -> None:
        if node.name:
            self.bound.add(node.name)
        self.generic_visit(node)

    def visit_MatchStar(self, node: ast.MatchStar) -> None:
        if node.name:
            self.bound.add(node.name)

    def visit_MatchMapping(self, node: ast.MatchMapping) -> None:
        if node.rest:
            self.bound.add(node.rest)
        self.generic_visit(node)


def local_names(root: FunctionNode) -> frozenset[str]:
    """Return identifiers local to ``root``, excluding ``global``/``nonlocal`` names."""
    collector = _LocalNameCollector(root)
    collector.visit(root)
    return frozenset(collector.bound - collector.declared_outer)


class CanonicalNames:
    """Assign ``v0, v1, ...`` to local identifiers in first-seen order."""

    def __init__(self, local: Iterable[str], function_name: str | None = None) -> None:
        self._local = frozenset(local)
        self._function_name = function_name
        self._mapping: dict[str, str] = {}

    def canonical(self, name: str) -> str:
        if name in self._local:
            if name not in self._mapping:
                self._mapping[name] = f"v{len(self._mapping)}"
            return self._mapping[name]
        if name == self._function_name:
            return SELF_PLACEHOLDER
        return name

    @property
    def mapping(self) -> dict[str, str]:
        return dict(self._mapping)


def _canonical_scalar(
    field_name: str, value: object, names: CanonicalNames, *, rename: bool = True
) -> str:
    if isinstance(value, str):
        if rename and field_name in _IDENTIFIER_FIELDS:
            return names.canonical(value)
        if field_name == "value":
            return STRING_PLACEHOLDER
        return value
    if isinstance(value, bytes):
        return BYTES_PLACEHOLDER
    return repr(value)


def _merkle(node: ast.AST, names: CanonicalNames) -> str:
    parts = [type(node).__name__]
    strip_docstring = isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))
    # Keyword argument names belong to the callee, not to this function
    rename = not isinstance(node, ast.keyword)

    for field_name, value in ast.iter_fields(node):
        if field_name in _SKIPPED_FIELDS:
            continue
        if isinstance(value, ast.expr_context):
            parts.append(f"{field_name}={type(value).__name__}")
        elif isinstance(value, ast.AST):
            parts.append(f"{field_name}:{_merkle(value, names)}")
        elif isinstance(value, list):
            if strip_docstring and field_name == "body":
                value = _strip_docstring(value)
            children = [
                _merkle(item, names)
                if isinstance(item, ast.AST)
                else _canonical_scalar(field_name, item, names, rename=rename)
                for item in value
            ]
            parts.append(f"{field_name}[{','.join(children)}]")
        elif value is not None:
            parts.append(f"{field_name}={_canonical_scalar(field_name, value, names, rename=rename)}")

    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def structural_hash(node: ast.AST) -> str:
    """Compute the alpha-renamed Merkle hash of a function.

    The walk never mutates ``node``.

    :param node: Function definition, or a module wrapping exactly one.
    :return: 32 character hex digest.
    :raises ValueError: If ``node`` does not describe a function.
    """
    root = function_root(node)
    if root is None:
        raise ValueError(f"Expected a function definition, got {type(node).__name__}")
    names = CanonicalNames(local_names(root), root.name)
    return _merkle(root, names)[:STRUCTURAL_HASH_LENGTH]


def tokenize_source(source: str) -> list[str]:
    """Tokenize source, ignoring whitespace, comments, and layout tokens."""
    tokens: list[str] = []
    try:
        for tok in tokenize.generate_tokens(StringIO(source).readline):
            if tok.type not in _SKIPPED_TOKEN_TYPES and tok.string:
                tokens.append(tok.string)
    except (tokenize.TokenError, SyntaxError):
        # Fall back to simple whitespace splitting
        tokens = source.split()
    return tokens


def function_tokens(root: FunctionNode) -> list[str]:
    """Regenerate a token stream for a function from its AST."""
    return tokenize_source(ast.unparse(root))


def canonicalize_tokens(tokens: Sequence[str], node: ast.AST | None) -> list[str]:
    """Apply the same local-name renaming used for hashing to a token stream.

    :param tokens: Raw token strings.
    :param node: Function AST the tokens came from (may be ``None``).
    :return: Canonical tokens.
    """
    root = function_root(node)
    if root is None:
        names = CanonicalNames(())
    else:
        names = CanonicalNames(local_names(root), root.name)

    canonical: list[str] = []
    for token in tokens:
        if _STRING_TOKEN.match(token):
            canonical.append(STRING_PLACEHOLDER)
        elif token.isidentifier() and not keyword.iskeyword(token):
            canonical.append(names.canonical(token))
        else:
            canonical.append(token)
    return canonical


_BRANCH_NODES = (ast.If, ast.IfExp, ast.ExceptHandler, ast.match_case)
_LOOP_NODES = (ast.For, ast.AsyncFor, ast.While, ast.comprehension)
_NESTING_NODES = (
    ast.If,
    ast.For,
    ast.AsyncFor,
    ast.While,
    ast.With,
    ast.AsyncWith,
    ast.Try,
    ast.Match,
)
if hasattr(ast, "TryStar"):
    _NESTING_NODES = (*_NESTING_NODES, ast.TryStar)


class _FeatureVisitor(ast.NodeVisitor):
    def __init__(self) -> None:
        self.branches = 0
        self.loops = 0
        self.statements = 0
        self.boolean_operands = 0
        self.max_nesting = 0
        self._depth = 0

    def generic_visit(self, node: ast.AST) -> None:
        if isinstance(node, _BRANCH_NODES):
            self.branches += 1
        if isinstance(node, _LOOP_NODES):
            self.loops += 1
        if isinstance(node, ast.stmt):
            self.statements += 1
        if isinstance(node, ast.BoolOp):
            self.boolean_operands += len(node.values) - 1

        nests = isinstance(node, _NESTING_NODES)
        if nests:
            self._depth += 1
            self.max_nesting = max(self.max_nesting, self._depth)
        super().generic_visit(node)
        if nests:
            self._depth -= 1


def _parameter_count(root: FunctionNode) -> int:
    arguments = root.args
    count = len(arguments.posonlyargs) + len(arguments.args) + len(arguments.kwonlyargs)
    if arguments.vararg is not None:
        count += 1
    if arguments.kwarg is not None:
        count += 1
    return count


def _visit_body(root: FunctionNode) -> _FeatureVisitor:
    visitor = _FeatureVisitor()
    for statement in _strip_docstring(root.body):
        visitor.visit(statement)
    return visitor


def extract_features(root: FunctionNode) -> StructuralFeatures:
    """Compute the structural feature vector of a function body."""
    visitor = _visit_body(root)
    return StructuralFeatures(
        branch_count=visitor.branches,
        loop_count=visitor.loops,
        max_nesting=visitor.max_nesting,
        statement_count=visitor.statements,
        parameter_count=_parameter_count(root),
    )


def cyclomatic_complexity(root: FunctionNode) -> int:
    """Estimate McCabe complexity: one plus decision points."""
    visitor = _visit_body(root)
    return 1 + visitor.branches + visitor.loops + visitor.boolean_operands
