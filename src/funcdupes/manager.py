"""Similarity manager orchestrating representation, detection, consensus and scoring."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any

from funcdupes.confidence import ConfidenceCalculator
from funcdupes.consensus import ConsensusAggregator, validate_strategy
from funcdupes.constants import (
    CANONICAL_MERKLE,
    DETECTOR_IDS,
    EXACT_HASH,
    HIGH_IMPACT_COMPLEXITY,
    HIGH_IMPACT_LINES,
    LSH_FINGERPRINT,
    MEDIUM_IMPACT_COMPLEXITY,
    MEDIUM_IMPACT_LINES,
    SEMANTIC_ANN,
    STRUCTURAL_WEIGHTED,
)
from funcdupes.detectors import BaseDetector
from funcdupes.errors import DetectionCancelled, DetectorUnavailableError, InvalidOptionsError
from funcdupes.lsh import LSHFingerprintDetector
from funcdupes.models import (
    DetectionOptions,
    FunctionRepresentation,
    ImpactLevel,
    SimilarityGroup,
    SimilarityPair,
    SkipRecord,
)
from funcdupes.representation import EmbeddingProvider, HashCache, RepresentationBuilder
from funcdupes.semantic import SemanticANNDetector
from funcdupes.traditional import (
    CanonicalMerkleDetector,
    ExactHashDetector,
    StructuralWeightedDetector,
)

logger = logging.getLogger(__name__)

DETECTOR_TYPES: dict[str, type[BaseDetector]] = {
    EXACT_HASH: ExactHashDetector,
    STRUCTURAL_WEIGHTED: StructuralWeightedDetector,
    CANONICAL_MERKLE: CanonicalMerkleDetector,
    LSH_FINGERPRINT: LSHFingerprintDetector,
    SEMANTIC_ANN: SemanticANNDetector,
}


@dataclass
class DetectionReport:
    """Outcome of one detection run."""

    groups: list[SimilarityGroup] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skipped: list[SkipRecord] = field(default_factory=list)
    detector_pair_counts: dict[str, int] = field(default_factory=dict)
    degraded_detectors: list[str] = field(default_factory=list)
    enabled_detectors: tuple[str, ...] = ()
    function_count: int = 0

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "groups": [group.to_dict() for group in self.groups],
            "warnings": list(self.warnings),
            "skipped": [
                {"function_id": record.function_id, "reason": record.reason}
                for record in self.skipped
            ],
            "detector_pair_counts": dict(self.detector_pair_counts),
            "degraded_detectors": list(self.degraded_detectors),
            "enabled_detectors": list(self.enabled_detectors),
            "function_count": self.function_count,
        }


def refactoring_impact(average_complexity: float, lines_of_code: int) -> ImpactLevel:
    """Classify how much a group would gain from being refactored.

    :param average_complexity: Mean cyclomatic complexity of the members.
    :param lines_of_code: Combined lines of code of the members.
    :return: ``"high"``, ``"medium"`` or ``"low"``.
    """
    if average_complexity > HIGH_IMPACT_COMPLEXITY and lines_of_code > HIGH_IMPACT_LINES:
        return "high"
    if average_complexity > MEDIUM_IMPACT_COMPLEXITY or lines_of_code > MEDIUM_IMPACT_LINES:
        return "medium"
    return "low"


def _check_cancelled(cancel_event: threading.Event | None, stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise DetectionCancelled(f"Detection cancelled after {stage}")


class SimilarityManager:
    """
    Facade running the full detection pipeline.

    Representations are built once per run and shared read-only by every
    enabled detector; detectors may run concurrently.
    """

    def __init__(
        self,
        detectors: Iterable[BaseDetector] | None = None,
        builder: RepresentationBuilder | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        cache: HashCache | None = None,
    ) -> None:
        """Initialize the manager.

        :param detectors: Detector instances to register; defaults to one of each built-in type.
        :param builder: Representation builder; built from ``embedding_provider`` and
            ``cache`` when omitted.
        :param embedding_provider: Optional embedding source for the default builder.
        :param cache: Optional caller-owned hash cache for the default builder.
        """
        if detectors is None:
            detectors = [detector_type() for detector_type in DETECTOR_TYPES.values()]
        self.detectors: dict[str, BaseDetector] = {}
        for detector in detectors:
            if detector.name in self.detectors:
                raise ValueError(f"Duplicate detector registration: {detector.name}")
            self.detectors[detector.name] = detector
        self.builder = builder
        self.embedding_provider = embedding_provider
        self.cache = cache

    def _builder_for_run(self) -> RepresentationBuilder:
        if self.builder is not None:
            return self.builder
        # without a caller-owned cache, each run starts from an empty one
        return RepresentationBuilder(embedding_provider=self.embedding_provider, cache=self.cache)

    def _ordered(self, names: Iterable[str]) -> tuple[str, ...]:
        order = {name: index for index, name in enumerate(DETECTOR_IDS)}
        return tuple(sorted(names, key=lambda name: (order.get(name, len(order)), name)))

    def _validate_requested(self, options: DetectionOptions) -> None:
        if options.enabled_detectors is None:
            return
        unregistered = [name for name in options.enabled_detectors if name not in self.detectors]
        if unregistered:
            raise InvalidOptionsError(f"Detectors not registered: {', '.join(unregistered)}")
        validate_strategy(options.consensus, options.enabled_detectors)

    def resolve_detectors(
        self,
        representations: Sequence[FunctionRepresentation],
        options: DetectionOptions,
    ) -> tuple[str, ...]:
        """Return the detector ids that run for ``options``.

        Without an explicit selection, every registered detector whose inputs
        are available is enabled.
        """
        if options.enabled_detectors is not None:
            return self._ordered(options.enabled_detectors)
        return self._ordered(
            name
            for name, detector in self.detectors.items()
            if detector.is_available(representations)
        )

    def _run_one(
        self,
        name: str,
        representations: Sequence[FunctionRepresentation],
        options: DetectionOptions,
    ) -> list[SimilarityPair]:
        return self.detectors[name].detect(representations, options)

    def _run_detectors(
        self,
        enabled: tuple[str, ...],
        representations: Sequence[FunctionRepresentation],
        options: DetectionOptions,
        report: DetectionReport,
    ) -> dict[str, list[SimilarityPair]]:
        outcomes: dict[str, list[SimilarityPair] | BaseException] = {}
        max_workers = options.max_workers or len(enabled)

        if max_workers == 1 or len(enabled) == 1:
            for name in enabled:
                try:
                    outcomes[name] = self._run_one(name, representations, options)
                except Exception as e:
                    outcomes[name] = e
        else:
            with ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="funcdupes-detector"
            ) as executor:
                futures = {
                    name: executor.submit(self._run_one, name, representations, options)
                    for name in enabled
                }
                for name, future in futures.items():
                    try:
                        outcomes[name] = future.result()
                    except Exception as e:
                        outcomes[name] = e

        results: dict[str, list[SimilarityPair]] = {}
        for name in enabled:
            outcome = outcomes[name]
            if isinstance(outcome, DetectorUnavailableError):
                report.degraded_detectors.append(name)
                report.warn(f"Detector {name} unavailable: {outcome}")
                continue
            if isinstance(outcome, BaseException):
                logger.debug(f"Detector {name} failed", exc_info=outcome)
                report.degraded_detectors.append(name)
                report.warn(f"Detector {name} failed and was skipped: {outcome}")
                continue
            results[name] = outcome
            report.detector_pair_counts[name] = len(outcome)
            logger.info(f"Detector {name} reported {len(outcome)} pairs")
        return results

    def _finalize(
        self,
        groups: Sequence[SimilarityGroup],
        representations: Sequence[FunctionRepresentation],
        options: DetectionOptions,
    ) -> list[SimilarityGroup]:
        by_id = {rep.function_id: rep for rep in representations}
        calculator = ConfidenceCalculator(by_id)

        finalized: list[SimilarityGroup] = []
        for group in groups:
            if group.size < options.min_group_size or group.similarity < options.threshold:
                continue
            confidences = [
                calculator.score(edge, group.size, group.members).final_score
                for edge in group.edges
            ]
            members = [by_id[member] for member in group.members]
            lines = sum(rep.line_count for rep in members)
            average_complexity = sum(rep.complexity for rep in members) / len(members)
            finalized.append(
                replace(
                    group,
                    confidence=sum(confidences) / len(confidences),
                    lines_of_code=lines,
                    refactoring_impact=refactoring_impact(average_complexity, lines),
                    priority=group.similarity * lines,
                )
            )

        finalized.sort(key=lambda group: (-group.priority, -group.similarity, group.members))
        return finalized

    def run(
        self,
        functions: Iterable[Any] | None,
        options: DetectionOptions | None = None,
        cancel_event: threading.Event | None = None,
    ) -> DetectionReport:
        """Run the full pipeline and return groups plus diagnostics.

        :param functions: ``FunctionInfo`` records from an external parser.
        :param options: Detection options; defaults to ``DetectionOptions()``.
        :param cancel_event: Optional event checked between stages.
        :return: Detection report.
        :raises InvalidOptionsError: For malformed options, before any detector runs.
        :raises AggregationError: For weighted strategies naming disabled detectors.
        :raises DetectionCancelled: When ``cancel_event`` is set at a stage boundary.
        """
        options = options if options is not None else DetectionOptions()
        if not isinstance(options, DetectionOptions):
            raise InvalidOptionsError(f"Expected DetectionOptions, got {type(options).__name__}")
        self._validate_requested(options)
        _check_cancelled(cancel_event, "validation")

        report = DetectionReport()
        build = self._builder_for_run().build(functions)
        report.skipped.extend(build.skipped)
        report.warnings.extend(build.warnings)
        report.function_count = len(build.representations)
        representations = build.representations
        _check_cancelled(cancel_event, "representation build")

        enabled = self.resolve_detectors(representations, options)
        validate_strategy(options.consensus, enabled)
        report.enabled_detectors = enabled
        if len(representations) < 2 or not enabled:
            logger.info(f"Nothing to compare ({len(representations)} functions)")
            return report

        logger.info(
            f"Running {len(enabled)} detectors on {len(representations)} functions: "
            f"{', '.join(enabled)}"
        )
        results = self._run_detectors(enabled, representations, options, report)
        _check_cancelled(cancel_event, "detection")

        aggregator = ConsensusAggregator(options.consensus, enabled)
        groups = aggregator.aggregate(results)
        _check_cancelled(cancel_event, "aggregation")

        report.groups = self._finalize(groups, representations, options)
        logger.info(f"Found {len(report.groups)} similarity groups")
        return report

    def detect_similarities(
        self,
        functions: Iterable[Any] | None,
        options: DetectionOptions | None = None,
    ) -> list[SimilarityGroup]:
        """Return similarity groups for ``functions``, sorted by priority."""
        return self.run(functions, options).groups


def detect_similarities(
    functions: Iterable[Any] | None,
    options: DetectionOptions | None = None,
    embedding_provider: EmbeddingProvider | None = None,
    detectors: Iterable[BaseDetector] | None = None,
) -> list[SimilarityGroup]:
    """
    Convenience function for a one-off detection run.

    :param functions: ``FunctionInfo`` records.
    :param options: Detection options.
    :param embedding_provider: Optional embedding source for the semantic detector.
    :param detectors: Detector instances to use instead of the built-in set.
    :return: Similarity groups sorted by priority.
    """
    manager = SimilarityManager(detectors, embedding_provider=embedding_provider)
    return manager.detect_similarities(functions, options)
