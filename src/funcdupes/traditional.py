"""Hash-bucket and structural-feature detectors."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterator, Mapping, Sequence
from itertools import combinations, product
from pathlib import Path

import numpy as np

from funcdupes.constants import (
    CANONICAL_MERKLE,
    DEFAULT_SIZE_BUCKET_WIDTH,
    EXACT_HASH,
    SIGNATURE_MATCH_SCORE,
    STRUCTURAL_FEATURE_WEIGHTS,
    STRUCTURAL_MATCH_SCORE,
    STRUCTURAL_WEIGHTED,
)
from funcdupes.detectors import BaseDetector, clamp_score, eligible, may_pair, size_diffs, sort_pairs
from funcdupes.models import DetectionOptions, FunctionRepresentation, SimilarityPair

logger = logging.getLogger(__name__)


def _bucket_pairs(
    representations: Sequence[FunctionRepresentation],
    hash_attr: str,
    options: DetectionOptions,
) -> Iterator[tuple[FunctionRepresentation, FunctionRepresentation, str]]:
    """Yield pairs of functions sharing a stored hash attribute."""
    by_hash: dict[tuple[Path | None, str], list[FunctionRepresentation]] = defaultdict(list)

    for rep in representations:
        value = getattr(rep, hash_attr, None)
        if value:
            scope = None if options.cross_file else rep.file_path
            by_hash[(scope, value)].append(rep)

    for (_, value), group in by_hash.items():
        if len(group) <= 1:
            continue
        for a, b in combinations(group, 2):
            if may_pair(a, b, options):
                yield a, b, value


class ExactHashDetector(BaseDetector):
    """Group functions by structural hash, then by signature hash."""

    name = EXACT_HASH
    description = "identical canonical structure or identical signature"

    def detect(
        self,
        representations: Sequence[FunctionRepresentation],
        options: DetectionOptions,
    ) -> list[SimilarityPair]:
        candidates = eligible(representations, options)
        pairs: dict[tuple[str, str], SimilarityPair] = {}

        for a, b, digest in _bucket_pairs(candidates, "structural_hash", options):
            pair = SimilarityPair(
                a.function_id,
                b.function_id,
                detector=self.name,
                score=STRUCTURAL_MATCH_SCORE,
                explanation="identical structure",
                metadata={"hash_type": "structural", "hash": digest, **size_diffs(a, b)},
            )
            pairs[pair.key] = pair

        if SIGNATURE_MATCH_SCORE >= options.threshold:
            for a, b, digest in _bucket_pairs(candidates, "signature_hash", options):
                pair = SimilarityPair(
                    a.function_id,
                    b.function_id,
                    detector=self.name,
                    score=SIGNATURE_MATCH_SCORE,
                    explanation="identical signature",
                    metadata={"hash_type": "signature", "hash": digest, **size_diffs(a, b)},
                )
                pairs.setdefault(pair.key, pair)

        logger.info(f"Found {len(pairs)} exact hash pairs")
        return sort_pairs(pairs.values())


class CanonicalMerkleDetector(BaseDetector):
    """Report functions whose alpha-renamed Merkle roots are equal."""

    name = CANONICAL_MERKLE
    description = "identical alpha-renamed AST Merkle root"

    def detect(
        self,
        representations: Sequence[FunctionRepresentation],
        options: DetectionOptions,
    ) -> list[SimilarityPair]:
        pairs = [
            SimilarityPair(
                a.function_id,
                b.function_id,
                detector=self.name,
                score=STRUCTURAL_MATCH_SCORE,
                explanation="identical structure after renaming locals",
                metadata={"merkle_root": digest, **size_diffs(a, b)},
            )
            for a, b, digest in _bucket_pairs(
                eligible(representations, options), "structural_hash", options
            )
        ]
        logger.info(f"Found {len(pairs)} canonical merkle pairs")
        return sort_pairs(pairs)


class StructuralWeightedDetector(BaseDetector):
    """Compare weighted AST feature vectors within neighbouring size buckets."""

    name = STRUCTURAL_WEIGHTED
    description = "weighted similarity of branch/loop/nesting/statement/parameter counts"

    def __init__(
        self,
        weights: Mapping[str, float] = STRUCTURAL_FEATURE_WEIGHTS,
        bucket_width: int = DEFAULT_SIZE_BUCKET_WIDTH,
    ) -> None:
        """Initialize the detector.

        :param weights: Per-feature weights keyed by ``StructuralFeatures`` field name.
        :param bucket_width: Token-count width of a size bucket.
        """
        unknown = set(weights) - set(STRUCTURAL_FEATURE_WEIGHTS)
        if unknown:
            raise ValueError(f"Unknown structural features: {', '.join(sorted(unknown))}")
        total = sum(weights.values())
        if total <= 0 or any(value < 0 for value in weights.values()):
            raise ValueError("Structural feature weights must be non-negative with a positive sum")
        if bucket_width < 1:
            raise ValueError("bucket_width must be >= 1")

        self.feature_names = tuple(STRUCTURAL_FEATURE_WEIGHTS)
        self.weights = np.array(
            [weights.get(name, 0.0) / total for name in self.feature_names], dtype=np.float64
        )
        self.bucket_width = bucket_width

    def _matrix(self, reps: Sequence[FunctionRepresentation]) -> np.ndarray:
        return np.array(
            [[rep.features.as_dict()[name] for name in self.feature_names] for rep in reps],
            dtype=np.float64,
        ).reshape(len(reps), len(self.feature_names))

    def score_matrix(
        self, left: Sequence[FunctionRepresentation], right: Sequence[FunctionRepresentation]
    ) -> np.ndarray:
        """Pairwise similarity matrix between two lists of representations.

        Per feature the distance is ``|a - b| / max(a, b)`` (zero when both
        are zero); the score is one minus the weighted distance.
        """
        a = self._matrix(left)[:, None, :]
        b = self._matrix(right)[None, :, :]
        diff = np.abs(a - b)
        denom = np.maximum(a, b)
        distance = np.divide(diff, denom, out=np.zeros_like(diff), where=denom > 0)
        return 1.0 - distance @ self.weights

    def _bucketed(
        self, candidates: Sequence[FunctionRepresentation]
    ) -> Iterator[tuple[list[FunctionRepresentation], list[FunctionRepresentation], bool]]:
        buckets: dict[int, list[FunctionRepresentation]] = defaultdict(list)
        for rep in candidates:
            buckets[rep.token_count // self.bucket_width].append(rep)
        for bucket in sorted(buckets):
            yield buckets[bucket], buckets[bucket], True
            if bucket + 1 in buckets:
                yield buckets[bucket], buckets[bucket + 1], False

    def detect(
        self,
        representations: Sequence[FunctionRepresentation],
        options: DetectionOptions,
    ) -> list[SimilarityPair]:
        candidates = eligible(representations, options)
        pairs: list[SimilarityPair] = []

        for left, right, same_bucket in self._bucketed(candidates):
            scores = self.score_matrix(left, right)
            if same_bucket:
                index_pairs = combinations(range(len(left)), 2)
            else:
                index_pairs = product(range(len(left)), range(len(right)))
            for i, j in index_pairs:
                score = clamp_score(scores[i, j])
                a, b = left[i], right[j]
                if score < options.threshold or not may_pair(a, b, options):
                    continue
                pairs.append(
                    SimilarityPair(
                        a.function_id,
                        b.function_id,
                        detector=self.name,
                        score=score,
                        explanation=f"structural features {score:.0%} similar",
                        metadata={
                            "features": {
                                rep.function_id: rep.features.as_dict()
                                for rep in sorted((a, b), key=lambda rep: rep.function_id)
                            },
                            "merkle_match": a.structural_hash == b.structural_hash,
                            **size_diffs(a, b),
                        },
                    )
                )

        logger.info(f"Found {len(pairs)} structural pairs")
        return sort_pairs(pairs)
