"""Build per-function representations shared by every detector in a run."""

from __future__ import annotations

import ast
import hashlib
import logging
import threading
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import numpy as np

from funcdupes.canonical import (
    FunctionNode,
    canonicalize_tokens,
    cyclomatic_complexity,
    extract_features,
    function_root,
    function_tokens,
    structural_hash,
)
from funcdupes.constants import DEFAULT_FINGERPRINT_BITS, DEFAULT_SHINGLE_SIZES
from funcdupes.errors import RepresentationBuildError
from funcdupes.fingerprint import simhash, validate_bits
from funcdupes.models import FunctionInfo, FunctionRepresentation, SkipRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Supplies an embedding vector for a function, or ``None``."""

    def embed(self, function: FunctionInfo) -> Sequence[float] | None: ...


class MappingEmbeddingProvider:
    """Serve precomputed embeddings keyed by function id."""

    def __init__(self, embeddings: Mapping[str, Sequence[float]]) -> None:
        self._embeddings = dict(embeddings)

    def embed(self, function: FunctionInfo) -> Sequence[float] | None:
        return self._embeddings.get(function.function_id)


class HashCache:
    """Caller-owned memo of structural hashes and fingerprints.

    Keys are content digests, so a cache may be reused across runs.
    """

    def __init__(self) -> None:
        self._structural: dict[str, str] = {}
        self._fingerprints: dict[str, int] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._structural) + len(self._fingerprints)

    def clear(self) -> None:
        with self._lock:
            self._structural.clear()
            self._fingerprints.clear()
            self.hits = 0
            self.misses = 0

    def _lookup(self, store: dict[str, Any], key: str) -> Any:
        with self._lock:
            if key in store:
                self.hits += 1
                return store[key]
            self.misses += 1
            return None

    def structural_hash(self, root: FunctionNode) -> str:
        key = hashlib.sha256(ast.dump(root).encode("utf-8")).hexdigest()
        cached = self._lookup(self._structural, key)
        if cached is not None:
            return cached
        value = structural_hash(root)
        with self._lock:
            self._structural[key] = value
        return value

    def fingerprint(self, tokens: Sequence[str], bits: int, shingle_sizes: Sequence[int]) -> int:
        material = "\x1f".join(tokens) + f"\x1e{bits}\x1e{tuple(shingle_sizes)}"
        key = hashlib.sha256(material.encode("utf-8")).hexdigest()
        cached = self._lookup(self._fingerprints, key)
        if cached is not None:
            return cached
        value = simhash(tokens, bits=bits, shingle_sizes=shingle_sizes)
        with self._lock:
            self._fingerprints[key] = value
        return value


@dataclass
class BuildResult:
    representations: list[FunctionRepresentation] = field(default_factory=list)
    skipped: list[SkipRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)


def _annotation_text(node: ast.expr | None) -> str:
    return ast.unparse(node) if node is not None else ""


def signature_text(function: FunctionInfo, root: FunctionNode | None) -> str:
    """Render ``name(params)->return`` from parser metadata or AST annotations."""
    if function.signature is not None:
        signature = function.signature
        params = ",".join(signature.parameter_types)
        return f"{signature.name or function.display_name}({params})->{signature.return_type or ''}"
    if root is not None:
        arguments = root.args
        params = [
            _annotation_text(arg.annotation)
            for arg in (*arguments.posonlyargs, *arguments.args, *arguments.kwonlyargs)
        ]
        if arguments.vararg is not None:
            params.append("*" + _annotation_text(arguments.vararg.annotation))
        if arguments.kwarg is not None:
            params.append("**" + _annotation_text(arguments.kwarg.annotation))
        return f"{function.display_name}({','.join(params)})->{_annotation_text(root.returns)}"
    return function.display_name


class RepresentationBuilder:
    """Derive structural hashes, fingerprints, features and embeddings once per run."""

    def __init__(
        self,
        embedding_provider: EmbeddingProvider | None = None,
        cache: HashCache | None = None,
        bits: int = DEFAULT_FINGERPRINT_BITS,
        shingle_sizes: Sequence[int] = DEFAULT_SHINGLE_SIZES,
    ) -> None:
        """Initialize the builder.

        :param embedding_provider: Optional source of embeddings for functions
            that do not carry one.
        :param cache: Optional caller-owned hash cache.
        :param bits: Fingerprint width, 64 or 128.
        :param shingle_sizes: Token n-gram sizes for fingerprints.
        """
        self.embedding_provider = embedding_provider
        self.cache = cache if cache is not None else HashCache()
        self.bits = validate_bits(bits)
        self.shingle_sizes = tuple(shingle_sizes)

    def build(self, functions: Iterable[Any] | None) -> BuildResult:
        """Build representations, recording a skip for every unusable input.

        :param functions: Function records; ``None`` or malformed entries are skipped.
        :return: Representations in input order plus skip records.
        """
        result = BuildResult()
        records = list(functions or [])
        self._prime_provider([item for item in records if isinstance(item, FunctionInfo)], result)

        seen_ids: set[str] = set()
        for index, function in enumerate(records):
            if not isinstance(function, FunctionInfo):
                result.skipped.append(SkipRecord(f"<input {index}>", "not a function record"))
                continue
            if function.function_id in seen_ids:
                result.skipped.append(SkipRecord(function.function_id, "duplicate function id"))
                continue
            try:
                representation = self._build_one(function, result)
            except (RepresentationBuildError, ValueError, SyntaxError, RecursionError) as e:
                logger.debug(f"Skipping {function.function_id}: {e}")
                result.skipped.append(SkipRecord(function.function_id, str(e)))
                continue
            seen_ids.add(function.function_id)
            result.representations.append(representation)

        logger.info(
            f"Built {len(result.representations)} representations "
            f"({len(result.skipped)} skipped, cache hits={self.cache.hits})"
        )
        return result

    def _prime_provider(self, functions: list[FunctionInfo], result: BuildResult) -> None:
        prime = getattr(self.embedding_provider, "prime", None)
        if prime is None:
            return
        pending = [function for function in functions if function.embedding is None]
        if not pending:
            return
        try:
            prime(pending)
        except Exception as e:
            result.warn(f"Embedding provider failed to prepare embeddings: {e}")

    def _build_one(self, function: FunctionInfo, result: BuildResult) -> FunctionRepresentation:
        root = function_root(function.ast_node)
        if root is None:
            raise RepresentationBuildError("missing or non-function AST")

        try:
            tokens = list(function.tokens or ()) or function_tokens(root)
            if not tokens:
                raise RepresentationBuildError("empty token stream")
            if not all(isinstance(token, str) for token in tokens):
                raise RepresentationBuildError("token stream contains non-string tokens")

            canonical_tokens = canonicalize_tokens(tokens, root)
            complexity = (
                function.metrics.cyclomatic_complexity
                if function.metrics is not None
                else cyclomatic_complexity(root)
            )
            structural = self.cache.structural_hash(root)
            fingerprint = self.cache.fingerprint(canonical_tokens, self.bits, self.shingle_sizes)
            signature_hash = hashlib.sha256(
                signature_text(function, root).encode("utf-8")
            ).hexdigest()[:32]
            features = extract_features(root)
        except (AttributeError, TypeError) as e:
            raise RepresentationBuildError(f"malformed function AST or tokens: {e}") from e

        return FunctionRepresentation(
            function_id=function.function_id,
            file_path=function.file_path,
            line_range=(function.start_line, function.end_line),
            token_count=len(tokens),
            structural_hash=structural,
            fingerprint=fingerprint,
            fingerprint_bits=self.bits,
            signature_hash=signature_hash,
            features=features,
            display_name=function.display_name,
            line_count=function.line_count,
            complexity=complexity,
            embedding=self._embedding_for(function, result),
        )

    def _embedding_for(self, function: FunctionInfo, result: BuildResult) -> np.ndarray | None:
        vector = function.embedding
        if vector is None and self.embedding_provider is not None:
            try:
                vector = self.embedding_provider.embed(function)
            except Exception as e:
                result.warn(f"Embedding provider failed for {function.function_id}: {e}")
                vector = None
        if vector is None:
            return None

        try:
            array = np.array(vector, dtype=np.float32).ravel()
        except (TypeError, ValueError):
            array = np.empty(0, dtype=np.float32)
        if array.size == 0 or not np.all(np.isfinite(array)):
            result.warn(f"Ignoring invalid embedding for {function.function_id}")
            return None
        array.setflags(write=False)
        return array
