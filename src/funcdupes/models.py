"""Data models for function records, representations, and similarity results."""

from __future__ import annotations

import ast
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, ClassVar, Literal, Union

import numpy as np

from funcdupes.constants import (
    DEFAULT_MAJORITY_THRESHOLD,
    DEFAULT_MIN_GROUP_SIZE,
    DEFAULT_MIN_LINES,
    DEFAULT_THRESHOLD,
    DEFAULT_WEIGHTED_THRESHOLD,
    DETECTOR_IDS,
)
from funcdupes.errors import InvalidOptionsError
from funcdupes.pairs import ordered_pair_key, unordered_pair_key

ImpactLevel = Literal["low", "medium", "high"]


@dataclass(frozen=True)
class FunctionSignature:
    """Name and declared types of a function, as reported by the parser."""

    name: str
    parameter_types: tuple[str, ...] = ()
    return_type: str | None = None


@dataclass(frozen=True)
class FunctionMetrics:
    """Size and complexity metrics reported by the parser."""

    lines_of_code: int
    cyclomatic_complexity: int = 1


@dataclass
class FunctionInfo:
    """A function record supplied by an external parser/analyzer."""

    function_id: str
    file_path: Path
    start_line: int
    end_line: int
    ast_node: ast.AST | None = None
    tokens: Sequence[str] = field(default_factory=list)
    signature: FunctionSignature | None = None
    metrics: FunctionMetrics | None = None
    name: str = ""
    qualified_name: str = ""  # module.ClassName.method_name
    source: str | None = None
    embedding: Sequence[float] | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.file_path = Path(self.file_path)

    @property
    def display_name(self) -> str:
        """Best human-readable name for this function."""
        if self.name:
            return self.name
        if self.signature is not None and self.signature.name:
            return self.signature.name
        return self.function_id

    @property
    def line_count(self) -> int:
        """Lines of code, preferring parser metrics over the raw line range."""
        if self.metrics is not None:
            return self.metrics.lines_of_code
        return max(0, self.end_line - self.start_line + 1)


@dataclass(frozen=True)
class StructuralFeatures:
    """Small AST-derived feature vector used by the Structural-Weighted detector."""

    branch_count: int = 0
    loop_count: int = 0
    max_nesting: int = 0
    statement_count: int = 0
    parameter_count: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "branch_count": self.branch_count,
            "loop_count": self.loop_count,
            "max_nesting": self.max_nesting,
            "statement_count": self.statement_count,
            "parameter_count": self.parameter_count,
        }


@dataclass(frozen=True)
class FunctionRepresentation:
    """Comparable artifacts derived from one function for a single analysis run."""

    function_id: str
    file_path: Path
    line_range: tuple[int, int]
    token_count: int
    structural_hash: str
    fingerprint: int
    fingerprint_bits: int
    signature_hash: str
    features: StructuralFeatures
    display_name: str
    line_count: int
    complexity: int = 1
    embedding: np.ndarray | None = field(default=None, compare=False, repr=False)

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None


@dataclass(frozen=True)
class SkipRecord:
    """A function excluded from a run, with the reason it was excluded."""

    function_id: str
    reason: str


@dataclass(frozen=True, eq=False)
class SimilarityPair:
    """An unordered pair of functions reported by one detector."""

    function_a: str
    function_b: str
    detector: str
    score: float
    explanation: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.function_a == self.function_b:
            raise ValueError(f"Cannot pair a function with itself: {self.function_a}")
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"Pair score must be in [0.0, 1.0], got {self.score}")
        first, second = ordered_pair_key(self.function_a, self.function_b)
        object.__setattr__(self, "function_a", first)
        object.__setattr__(self, "function_b", second)
        object.__setattr__(self, "score", float(self.score))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def key(self) -> tuple[str, str]:
        """Ordered function id pair."""
        return (self.function_a, self.function_b)

    def __hash__(self) -> int:
        return hash((unordered_pair_key(self.function_a, self.function_b), self.detector))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SimilarityPair):
            return False
        return self.key == other.key and self.detector == other.detector

    def to_dict(self) -> dict[str, Any]:
        return {
            "functions": [self.function_a, self.function_b],
            "detector": self.detector,
            "score": self.score,
            "explanation": self.explanation,
            "metadata": _plain(self.metadata),
        }


@dataclass(frozen=True, eq=False)
class SimilarityGroup:
    """A connected component of pairs agreed upon by the consensus rule."""

    members: tuple[str, ...]
    similarity: float
    detector: str
    detectors: tuple[str, ...]
    explanation: str
    edges: tuple[SimilarityPair, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)
    refactoring_impact: ImpactLevel = "low"
    confidence: float | None = None
    priority: float = 0.0
    lines_of_code: int = 0

    def __post_init__(self) -> None:
        if len(self.members) < 2:
            raise ValueError("A similarity group needs at least two members")
        object.__setattr__(self, "members", tuple(sorted(self.members)))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def size(self) -> int:
        return len(self.members)

    def to_dict(self) -> dict[str, Any]:
        return {
            "members": list(self.members),
            "similarity": self.similarity,
            "confidence": self.confidence,
            "detector": self.detector,
            "detectors": list(self.detectors),
            "explanation": self.explanation,
            "refactoring_impact": self.refactoring_impact,
            "priority": self.priority,
            "lines_of_code": self.lines_of_code,
            "edges": [edge.to_dict() for edge in self.edges],
            "metadata": _plain(self.metadata),
        }


def _plain(value: Any) -> Any:
    """Convert read-only mappings and tuples into JSON-friendly containers."""
    if isinstance(value, Mapping):
        return {str(key): _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def _validate_unit_interval(label: str, value: float) -> None:
    """Validate a threshold in the ``(0.0, 1.0]`` range."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidOptionsError(f"{label} must be a number, got {value!r}")
    if math.isnan(value) or not 0.0 < value <= 1.0:
        raise InvalidOptionsError(f"{label} must be in (0.0, 1.0], got {value}")


@dataclass(frozen=True)
class UnionStrategy:
    """Keep any edge reported by at least one detector."""

    name: ClassVar[str] = "union"

    @property
    def tag(self) -> str:
        return f"consensus-{self.name}"


@dataclass(frozen=True)
class IntersectionStrategy:
    """Keep only edges reported by every detector that ran."""

    name: ClassVar[str] = "intersection"

    @property
    def tag(self) -> str:
        return f"consensus-{self.name}"


@dataclass(frozen=True)
class MajorityStrategy:
    """Keep edges reported by at least ``ceil(threshold * detectors)`` detectors."""

    threshold: float = DEFAULT_MAJORITY_THRESHOLD
    name: ClassVar[str] = "majority"

    def __post_init__(self) -> None:
        _validate_unit_interval("majority threshold", self.threshold)

    @property
    def tag(self) -> str:
        return f"consensus-{self.name}"


@dataclass(frozen=True)
class WeightedStrategy:
    """Keep edges whose summed detector weights reach ``threshold``."""

    weights: Mapping[str, float]
    threshold: float = DEFAULT_WEIGHTED_THRESHOLD
    name: ClassVar[str] = "weighted"

    def __post_init__(self) -> None:
        _validate_unit_interval("weighted threshold", self.threshold)
        if not self.weights:
            raise InvalidOptionsError("weighted strategy needs at least one detector weight")
        unknown = sorted(set(self.weights) - set(DETECTOR_IDS))
        if unknown:
            raise InvalidOptionsError(f"Unknown detectors in weights: {', '.join(unknown)}")
        for detector, weight in self.weights.items():
            if isinstance(weight, bool) or not isinstance(weight, (int, float)):
                raise InvalidOptionsError(f"Weight for {detector} must be a number")
            if math.isnan(weight) or weight < 0.0:
                raise InvalidOptionsError(f"Weight for {detector} must be >= 0, got {weight}")
        frozen = {detector: float(self.weights[detector]) for detector in sorted(self.weights)}
        object.__setattr__(self, "weights", MappingProxyType(frozen))

    @property
    def tag(self) -> str:
        return f"consensus-{self.name}"


ConsensusStrategy = Union[UnionStrategy, IntersectionStrategy, MajorityStrategy, WeightedStrategy]
CONSENSUS_STRATEGY_TYPES = (UnionStrategy, IntersectionStrategy, MajorityStrategy, WeightedStrategy)


@dataclass
class DetectionOptions:
    """Configuration for one similarity detection run."""

    threshold: float = DEFAULT_THRESHOLD
    min_lines: int = DEFAULT_MIN_LINES
    cross_file: bool = True
    enabled_detectors: tuple[str, ...] | None = None  # None: every detector with inputs
    consensus: ConsensusStrategy = field(default_factory=UnionStrategy)
    min_group_size: int = DEFAULT_MIN_GROUP_SIZE
    max_workers: int | None = None

    def __post_init__(self) -> None:
        _validate_unit_interval("threshold", self.threshold)

        if isinstance(self.min_lines, bool) or not isinstance(self.min_lines, int):
            raise InvalidOptionsError("min_lines must be an integer")
        if self.min_lines < 0:
            raise InvalidOptionsError("min_lines must be >= 0")

        if self.min_group_size < 2:
            raise InvalidOptionsError("min_group_size must be >= 2")

        if self.max_workers is not None and self.max_workers < 1:
            raise InvalidOptionsError("max_workers must be >= 1")

        if not isinstance(self.consensus, CONSENSUS_STRATEGY_TYPES):
            raise InvalidOptionsError(f"Unsupported consensus strategy: {self.consensus!r}")

        if self.enabled_detectors is not None:
            if isinstance(self.enabled_detectors, str):
                raise InvalidOptionsError("enabled_detectors must be a sequence of detector ids")
            normalized = tuple(name.strip().lower() for name in self.enabled_detectors)
            if not normalized:
                raise InvalidOptionsError("enabled_detectors must contain at least one detector")
            invalid = sorted(name for name in normalized if name not in DETECTOR_IDS)
            if invalid:
                allowed = ", ".join(DETECTOR_IDS)
                raise InvalidOptionsError(
                    f"Invalid enabled_detectors: {', '.join(invalid)}. Allowed values: {allowed}"
                )
            self.enabled_detectors = tuple(dict.fromkeys(normalized))
