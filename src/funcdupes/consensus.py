"""Merge per-detector pairs into similarity groups under a consensus rule."""

from __future__ import annotations

import logging
import math
from collections import Counter, defaultdict
from collections.abc import Hashable, Iterable, Mapping, Sequence

from funcdupes.errors import AggregationError
from funcdupes.models import (
    ConsensusStrategy,
    IntersectionStrategy,
    MajorityStrategy,
    SimilarityGroup,
    SimilarityPair,
    UnionStrategy,
    WeightedStrategy,
)

logger = logging.getLogger(__name__)

_WEIGHT_TOLERANCE = 1e-9

EdgeVotes = dict[str, SimilarityPair]


class UnionFind:
    """Disjoint sets over hashable, orderable items."""

    def __init__(self, items: Iterable[Hashable] = ()) -> None:
        self._parent: dict[Hashable, Hashable] = {}
        for item in items:
            self.add(item)

    def add(self, item: Hashable) -> None:
        self._parent.setdefault(item, item)

    def find(self, item: Hashable) -> Hashable:
        self.add(item)
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, left: Hashable, right: Hashable) -> None:
        left_root, right_root = self.find(left), self.find(right)
        if left_root == right_root:
            return
        # Smallest member stays the root so components are order-independent
        if right_root < left_root:
            left_root, right_root = right_root, left_root
        self._parent[right_root] = left_root

    def components(self) -> list[tuple[Hashable, ...]]:
        grouped: dict[Hashable, list[Hashable]] = defaultdict(list)
        for item in self._parent:
            grouped[self.find(item)].append(item)
        return sorted(tuple(sorted(members)) for members in grouped.values())


def validate_strategy(strategy: ConsensusStrategy, enabled: Iterable[str]) -> None:
    """Reject weighted strategies that reference detectors outside ``enabled``.

    :raises AggregationError: If a weight key names a detector that is not enabled.
    """
    if isinstance(strategy, WeightedStrategy):
        missing = sorted(set(strategy.weights) - set(enabled))
        if missing:
            raise AggregationError(
                f"Weighted consensus references detectors that are not enabled: {', '.join(missing)}"
            )


class ConsensusAggregator:
    """Apply a consensus strategy to detector results and build groups."""

    def __init__(self, strategy: ConsensusStrategy, enabled: Iterable[str] | None = None) -> None:
        """Initialize the aggregator.

        :param strategy: Consensus rule deciding which edges survive.
        :param enabled: Enabled detector ids, used to validate weighted strategies.
        """
        if enabled is not None:
            validate_strategy(strategy, enabled)
        self.strategy = strategy

    def collect_votes(
        self, results: Mapping[str, Sequence[SimilarityPair]]
    ) -> dict[tuple[str, str], EdgeVotes]:
        """Index the best pair per ``(edge, detector)``."""
        votes: dict[tuple[str, str], EdgeVotes] = defaultdict(dict)
        for detector, pairs in results.items():
            for pair in pairs:
                current = votes[pair.key].get(detector)
                if current is None or pair.score > current.score:
                    votes[pair.key][detector] = pair
        return dict(votes)

    def accepts(self, voters: Iterable[str], detector_count: int) -> bool:
        """Whether an edge reported by ``voters`` survives out of ``detector_count`` detectors."""
        voters = set(voters)
        strategy = self.strategy
        if not voters:
            return False
        if isinstance(strategy, UnionStrategy):
            return True
        if isinstance(strategy, IntersectionStrategy):
            return len(voters) >= detector_count
        if isinstance(strategy, MajorityStrategy):
            return len(voters) >= max(1, math.ceil(strategy.threshold * detector_count))
        if isinstance(strategy, WeightedStrategy):
            total = sum(strategy.weights.get(detector, 0.0) for detector in voters)
            return total >= strategy.threshold - _WEIGHT_TOLERANCE
        raise AggregationError(f"Unsupported consensus strategy: {strategy!r}")

    def aggregate(self, results: Mapping[str, Sequence[SimilarityPair]]) -> list[SimilarityGroup]:
        """Build groups from the pairs each successful detector reported.

        :param results: Detector id to reported pairs, for detectors that ran.
        :return: Groups sorted by similarity descending, then members.
        """
        detector_count = len(results)
        if detector_count == 0:
            return []

        votes = self.collect_votes(results)
        kept = {key: voters for key, voters in votes.items() if self.accepts(voters, detector_count)}
        logger.info(
            f"Consensus ({self.strategy.name}) kept {len(kept)} of {len(votes)} edges "
            f"from {detector_count} detectors"
        )

        union_find = UnionFind()
        for first, second in kept:
            union_find.union(first, second)

        edges_by_root: dict[Hashable, list[EdgeVotes]] = defaultdict(list)
        for (first, _), voters in kept.items():
            edges_by_root[union_find.find(first)].append(voters)

        single_detector = next(iter(results)) if detector_count == 1 else None
        groups = [
            self._build_group(members, edges_by_root[union_find.find(members[0])], single_detector)
            for members in union_find.components()
        ]
        groups.sort(key=lambda group: (-group.similarity, group.members))
        return groups

    def _build_group(
        self,
        members: tuple[str, ...],
        edge_votes: list[EdgeVotes],
        single_detector: str | None,
    ) -> SimilarityGroup:
        pairs = sorted(
            (pair for voters in edge_votes for pair in voters.values()),
            key=lambda pair: (-pair.score, pair.function_a, pair.function_b, pair.detector),
        )
        similarity = sum(pair.score for pair in pairs) / len(pairs)
        votes_per_detector = Counter(pair.detector for pair in pairs)
        detectors = tuple(sorted(votes_per_detector))

        if single_detector is not None:
            detector = single_detector
            explanation = pairs[0].explanation
        else:
            detector = self.strategy.tag
            explanation = f"{self.strategy.name} consensus of {', '.join(detectors)}"

        return SimilarityGroup(
            members=members,
            similarity=similarity,
            detector=detector,
            detectors=detectors,
            explanation=explanation,
            edges=tuple(pairs),
            metadata={
                "strategy": self.strategy.name,
                "edge_count": len(edge_votes),
                "detector_votes": dict(sorted(votes_per_detector.items())),
            },
        )
