"""Detector contract and the eligibility rules every detector shares."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from typing import ClassVar

from funcdupes.models import DetectionOptions, FunctionRepresentation, SimilarityPair


class BaseDetector(ABC):
    """A side-effect-free pair detector over function representations.

    Subclasses set ``name`` to their detector id and implement ``detect``.
    """

    name: ClassVar[str]
    description: ClassVar[str] = ""

    def is_available(self, representations: Sequence[FunctionRepresentation]) -> bool:
        """Whether the inputs this detector needs are present."""
        return True

    @abstractmethod
    def detect(
        self,
        representations: Sequence[FunctionRepresentation],
        options: DetectionOptions,
    ) -> list[SimilarityPair]:
        """Report every pair scoring at or above ``options.threshold``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def eligible(
    representations: Iterable[FunctionRepresentation], options: DetectionOptions
) -> list[FunctionRepresentation]:
    """Filter out functions shorter than ``options.min_lines``."""
    return [rep for rep in representations if rep.line_count >= options.min_lines]


def lines_overlap(a: FunctionRepresentation, b: FunctionRepresentation) -> bool:
    return a.line_range[0] <= b.line_range[1] and b.line_range[0] <= a.line_range[1]


def may_pair(a: FunctionRepresentation, b: FunctionRepresentation, options: DetectionOptions) -> bool:
    """Whether two functions may be reported together under ``options``.

    Same-file functions whose line ranges overlap (a nested function and
    its parent) are never paired.
    """
    if a.function_id == b.function_id:
        return False
    same_file = a.file_path == b.file_path
    if not options.cross_file and not same_file:
        return False
    return not (same_file and lines_overlap(a, b))


def clamp_score(score: float) -> float:
    return float(min(1.0, max(0.0, score)))


def size_diffs(a: FunctionRepresentation, b: FunctionRepresentation) -> dict[str, int]:
    return {
        "complexity_diff": abs(a.complexity - b.complexity),
        "lines_diff": abs(a.line_count - b.line_count),
    }


def sort_pairs(pairs: Iterable[SimilarityPair]) -> list[SimilarityPair]:
    """Sort by score descending, then by function ids."""
    return sorted(pairs, key=lambda pair: (-pair.score, pair.function_a, pair.function_b))
