"""Confidence adjustments applied to each kept similarity edge."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from funcdupes.constants import (
    LARGE_GROUP_PENALTY,
    LARGE_GROUP_SIZE,
    OVERLOAD_VARIANT_PENALTY,
    SAME_NAME_BONUS,
)
from funcdupes.models import FunctionRepresentation, SimilarityPair

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Adjustment:
    factor: str
    adjustment: float
    reason: str


@dataclass(frozen=True)
class ConfidenceResult:
    final_score: float
    base_score: float
    adjustments: tuple[Adjustment, ...] = ()


class ConfidenceCalculator:
    """Adjust a detector's score using naming, overload, and group-size signals.

    Usable on its own: it only needs the pair, the size of its group, and
    optionally the representations for name and signature lookups.
    """

    def __init__(
        self,
        representations: Mapping[str, FunctionRepresentation]
        | Iterable[FunctionRepresentation]
        | None = None,
        same_name_bonus: float = SAME_NAME_BONUS,
        overload_penalty: float = OVERLOAD_VARIANT_PENALTY,
        large_group_penalty: float = LARGE_GROUP_PENALTY,
        large_group_size: int = LARGE_GROUP_SIZE,
    ) -> None:
        if representations is None:
            self._representations: dict[str, FunctionRepresentation] = {}
        elif isinstance(representations, Mapping):
            self._representations = dict(representations)
        else:
            self._representations = {rep.function_id: rep for rep in representations}
        self.same_name_bonus = same_name_bonus
        self.overload_penalty = overload_penalty
        self.large_group_penalty = large_group_penalty
        self.large_group_size = large_group_size

    def _overload_variants(self, name: str, members: Iterable[str]) -> int:
        signatures = {
            rep.signature_hash
            for rep in (self._representations.get(member) for member in members)
            if rep is not None and rep.display_name == name
        }
        return max(0, len(signatures) - 1)

    def score(
        self,
        pair: SimilarityPair,
        group_size: int,
        group_members: Iterable[str] = (),
    ) -> ConfidenceResult:
        """Compute the adjusted confidence of one edge.

        :param pair: Edge to score; its ``score`` is the base.
        :param group_size: Number of members in the edge's group.
        :param group_members: Member ids of the group, for overload detection.
        :return: Final clamped score and the adjustments applied.
        """
        adjustments: list[Adjustment] = []
        rep_a = self._representations.get(pair.function_a)
        rep_b = self._representations.get(pair.function_b)

        if rep_a is not None and rep_b is not None and rep_a.display_name == rep_b.display_name:
            adjustments.append(
                Adjustment("same_name", self.same_name_bonus, f"both named {rep_a.display_name!r}")
            )
            members = set(group_members) | {pair.function_a, pair.function_b}
            variants = self._overload_variants(rep_a.display_name, members)
            if variants:
                adjustments.append(
                    Adjustment(
                        "overload_variants",
                        -self.overload_penalty * variants,
                        f"{variants} additional signature variant(s) of {rep_a.display_name!r}",
                    )
                )

        if group_size > self.large_group_size:
            adjustments.append(
                Adjustment(
                    "large_group",
                    -self.large_group_penalty,
                    f"group of {group_size} exceeds {self.large_group_size}",
                )
            )

        for adjustment in adjustments:
            logger.debug(
                f"Confidence {pair.function_a} <-> {pair.function_b}: "
                f"{adjustment.factor} {adjustment.adjustment:+.2f} ({adjustment.reason})"
            )

        raw = pair.score + sum(adjustment.adjustment for adjustment in adjustments)
        return ConfidenceResult(
            final_score=min(1.0, max(0.0, raw)),
            base_score=pair.score,
            adjustments=tuple(adjustments),
        )
