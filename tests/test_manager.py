from __future__ import annotations

import ast
import json
import random
import threading
from textwrap import dedent

import pytest

from funcdupes import manager as manager_module
from funcdupes.constants import (
    CANONICAL_MERKLE,
    EXACT_HASH,
    LSH_FINGERPRINT,
    SEMANTIC_ANN,
    STRUCTURAL_WEIGHTED,
)
from funcdupes.errors import AggregationError, DetectionCancelled, InvalidOptionsError
from funcdupes.manager import SimilarityManager, detect_similarities, refactoring_impact
from funcdupes.models import (
    DetectionOptions,
    FunctionInfo,
    IntersectionStrategy,
    MajorityStrategy,
    UnionStrategy,
    WeightedStrategy,
)
from funcdupes.representation import HashCache, MappingEmbeddingProvider, RepresentationBuilder
from funcdupes.traditional import CanonicalMerkleDetector, ExactHashDetector
from tests.conftest import (
    ADD_PAIR_SOURCE,
    RENAMED_ADD_PAIR_SOURCE,
    UNRELATED_SOURCE,
    make_function,
)


def _corpus():
    return [
        make_function(ADD_PAIR_SOURCE, file_path="pkg/a.py"),
        make_function(RENAMED_ADD_PAIR_SOURCE, file_path="pkg/b.py"),
        make_function(UNRELATED_SOURCE, file_path="pkg/c.py"),
        make_function(UNRELATED_SOURCE, file_path="pkg/d.py"),
    ]


def test_two_identical_and_one_unrelated_function() -> None:
    functions = [
        make_function(ADD_PAIR_SOURCE, file_path="a.py"),
        make_function(ADD_PAIR_SOURCE, file_path="b.py"),
        make_function(UNRELATED_SOURCE, file_path="c.py"),
    ]

    groups = detect_similarities(
        functions, DetectionOptions(threshold=0.9, min_lines=1, cross_file=True)
    )

    assert len(groups) == 1
    group = groups[0]
    assert group.members == ("a.py::add_all", "b.py::add_all")
    assert group.size == 2
    assert group.similarity == pytest.approx(1.0)
    assert group.confidence == pytest.approx(1.0)
    assert group.detector == "consensus-union"


def test_reordered_statements_only_match_structurally() -> None:
    first = make_function(
        """
        def normalise(record):
            name = record["name"].strip()
            age = int(record["age"])
            if age < 0:
                age = 0
            return name, age
        """,
        file_path="a.py",
    )
    second = make_function(
        """
        def normalise(record):
            years = int(record["age"])
            name = record["name"].strip()
            if years < 0:
                years = 0
            return name, years
        """,
        file_path="b.py",
    )
    manager = SimilarityManager()
    options = DetectionOptions(threshold=0.8, min_lines=1)

    report = manager.run([first, second], options)

    assert report.detector_pair_counts[EXACT_HASH] == 0
    assert report.detector_pair_counts[CANONICAL_MERKLE] == 0
    assert report.detector_pair_counts[STRUCTURAL_WEIGHTED] == 1
    (group,) = report.groups
    structural = [edge for edge in group.edges if edge.detector == STRUCTURAL_WEIGHTED]
    assert structural[0].score >= 0.8


def test_semantic_only_without_embeddings_degrades() -> None:
    report = SimilarityManager().run(
        _corpus(), DetectionOptions(enabled_detectors=[SEMANTIC_ANN])
    )

    assert report.groups == []
    assert report.degraded_detectors == [SEMANTIC_ANN]
    assert any(SEMANTIC_ANN in warning for warning in report.warnings)


def test_default_detectors_depend_on_available_inputs() -> None:
    plain = SimilarityManager().run(_corpus())
    functions = _corpus()
    provider = MappingEmbeddingProvider(
        {function.function_id: [1.0, float(index)] for index, function in enumerate(functions)}
    )
    with_embeddings = SimilarityManager(embedding_provider=provider).run(functions)

    assert SEMANTIC_ANN not in plain.enabled_detectors
    assert SEMANTIC_ANN in with_embeddings.enabled_detectors
    assert plain.enabled_detectors == (
        EXACT_HASH,
        STRUCTURAL_WEIGHTED,
        CANONICAL_MERKLE,
        LSH_FINGERPRINT,
    )


def test_groups_are_sorted_by_priority() -> None:
    groups = detect_similarities(_corpus())

    assert [group.members for group in groups] == [
        ("pkg/c.py::render_report", "pkg/d.py::render_report"),
        ("pkg/a.py::add_all", "pkg/b.py::sum_positive"),
    ]
    assert groups[0].priority > groups[1].priority
    assert groups[0].lines_of_code == 26
    assert groups[1].priority == pytest.approx(groups[1].similarity * 12)


def test_output_is_idempotent_and_order_independent() -> None:
    baseline = json.dumps([group.to_dict() for group in detect_similarities(_corpus())])

    assert json.dumps([group.to_dict() for group in detect_similarities(_corpus())]) == baseline
    for seed in range(3):
        functions = _corpus()
        random.Random(seed).shuffle(functions)
        shuffled = json.dumps([group.to_dict() for group in detect_similarities(functions)])
        assert shuffled == baseline


def test_sequential_and_threaded_runs_agree() -> None:
    threaded = SimilarityManager().run(_corpus(), DetectionOptions(max_workers=4))
    sequential = SimilarityManager().run(_corpus(), DetectionOptions(max_workers=1))

    assert threaded.to_dict() == sequential.to_dict()


def test_raising_threshold_never_adds_groups() -> None:
    counts = [
        len(detect_similarities(_corpus(), DetectionOptions(threshold=threshold)))
        for threshold in (0.5, 0.7, 0.9, 1.0)
    ]

    assert counts == sorted(counts, reverse=True)


def test_strategy_ordering() -> None:
    functions = _corpus()
    functions.append(
        make_function(
            """
            def count_positive(values):
                total = 0
                for value in values:
                    if value > 0:
                        total += 1
                        print(value)
                return total
            """,
            file_path="pkg/e.py",
        )
    )

    def group_count(strategy) -> int:
        options = DetectionOptions(threshold=0.8, consensus=strategy)
        return len(detect_similarities(functions, options))

    intersection = group_count(IntersectionStrategy())
    majority = group_count(MajorityStrategy(0.5))
    union = group_count(UnionStrategy())

    assert intersection <= majority <= union


def test_failing_detector_is_isolated() -> None:
    class BrokenExactHash(ExactHashDetector):
        def detect(self, representations, options):
            raise RuntimeError("boom")

    manager = SimilarityManager(detectors=[BrokenExactHash(), CanonicalMerkleDetector()])

    report = manager.run(_corpus())

    assert report.degraded_detectors == [EXACT_HASH]
    assert report.detector_pair_counts == {CANONICAL_MERKLE: 2}
    assert len(report.groups) == 2
    assert report.groups[0].detector == CANONICAL_MERKLE


def test_invalid_options_fail_before_detection() -> None:
    with pytest.raises(InvalidOptionsError):
        DetectionOptions(threshold=0.0)
    with pytest.raises(InvalidOptionsError):
        DetectionOptions(min_lines=-1)
    with pytest.raises(InvalidOptionsError):
        DetectionOptions(enabled_detectors=["nope"])
    with pytest.raises(InvalidOptionsError):
        DetectionOptions(enabled_detectors=[])
    with pytest.raises(InvalidOptionsError):
        DetectionOptions(consensus="union")
    with pytest.raises(InvalidOptionsError):
        SimilarityManager().run(_corpus(), {"threshold": 0.5})


def test_unregistered_detector_request_is_rejected() -> None:
    manager = SimilarityManager(detectors=[CanonicalMerkleDetector()])

    with pytest.raises(InvalidOptionsError):
        manager.run(_corpus(), DetectionOptions(enabled_detectors=[LSH_FINGERPRINT]))


def test_weighted_strategy_must_reference_enabled_detectors() -> None:
    options = DetectionOptions(
        enabled_detectors=[EXACT_HASH],
        consensus=WeightedStrategy({SEMANTIC_ANN: 1.0}),
    )

    with pytest.raises(AggregationError):
        SimilarityManager().run(_corpus(), options)


def test_duplicate_detector_registration_is_rejected() -> None:
    with pytest.raises(ValueError):
        SimilarityManager(detectors=[ExactHashDetector(), ExactHashDetector()])


def test_cancellation_between_stages() -> None:
    event = threading.Event()
    event.set()

    with pytest.raises(DetectionCancelled):
        SimilarityManager().run(_corpus(), cancel_event=event)


def test_cancellation_after_detection() -> None:
    event = threading.Event()

    class CancellingDetector(CanonicalMerkleDetector):
        def detect(self, representations, options):
            event.set()
            return super().detect(representations, options)

    manager = SimilarityManager(detectors=[CancellingDetector()])

    with pytest.raises(DetectionCancelled, match="detection"):
        manager.run(_corpus(), cancel_event=event)


def test_skipped_functions_are_reported() -> None:
    functions = [*_corpus(), None]

    report = SimilarityManager().run(functions)

    assert report.function_count == 4
    assert [record.reason for record in report.skipped] == ["not a function record"]


def test_small_inputs_return_no_groups() -> None:
    assert detect_similarities([]) == []
    assert detect_similarities(None) == []
    assert detect_similarities(_corpus()[:1]) == []


def test_min_group_size_filters_pairs() -> None:
    assert detect_similarities(_corpus(), DetectionOptions(min_group_size=3)) == []


def test_cache_is_shared_across_runs() -> None:
    cache = HashCache()
    manager = SimilarityManager(cache=cache)

    manager.run(_corpus())
    misses = cache.misses
    manager.run(_corpus())

    assert cache.misses == misses


def test_default_manager_starts_each_run_with_empty_cache(monkeypatch) -> None:
    builders: list[RepresentationBuilder] = []

    class RecordingBuilder(RepresentationBuilder):
        def __init__(self, **kwargs) -> None:
            super().__init__(**kwargs)
            builders.append(self)

    monkeypatch.setattr(manager_module, "RepresentationBuilder", RecordingBuilder)
    manager = SimilarityManager()

    manager.run(_corpus())
    manager.run(_corpus())

    first, second = builders
    assert first.cache is not second.cache
    assert first.cache.misses > 0
    assert second.cache.misses > 0


def test_malformed_records_do_not_abort_the_run() -> None:
    broken = make_function(UNRELATED_SOURCE, file_path="pkg/e.py")
    broken.tokens = [1, 2, 3]
    functions = [
        *_corpus()[:2],
        FunctionInfo(
            "x.py::broken", "x.py", 1, 5, ast_node=ast.FunctionDef(name="broken", body=[])
        ),
        broken,
    ]

    report = SimilarityManager().run(functions, DetectionOptions(threshold=0.9))

    assert report.function_count == 2
    assert {record.function_id for record in report.skipped} == {
        "x.py::broken",
        broken.function_id,
    }
    assert [group.members for group in report.groups] == [
        ("pkg/a.py::add_all", "pkg/b.py::sum_positive")
    ]


def test_refactoring_impact_levels() -> None:
    assert refactoring_impact(9, 120) == "high"
    assert refactoring_impact(9, 20) == "medium"
    assert refactoring_impact(2, 60) == "medium"
    assert refactoring_impact(2, 20) == "low"


def test_report_serialises_to_json() -> None:
    report = SimilarityManager().run(_corpus())

    payload = json.loads(json.dumps(report.to_dict()))

    assert payload["function_count"] == 4
    assert payload["groups"][0]["edges"][0]["detector"] in payload["enabled_detectors"]
    assert payload["detector_pair_counts"][CANONICAL_MERKLE] == 2


def test_embeddings_enable_semantic_grouping() -> None:
    first = make_function(ADD_PAIR_SOURCE, file_path="a.py", embedding=[1.0, 0.0, 0.0])
    second = make_function(
        dedent(
            """
            def accumulate(numbers):
                return sum(number for number in numbers if number > 0)
            """
        ),
        file_path="b.py",
        embedding=[0.99, 0.1, 0.0],
    )

    groups = detect_similarities(
        [first, second],
        DetectionOptions(threshold=0.9, min_lines=1, enabled_detectors=[SEMANTIC_ANN]),
    )

    (group,) = groups
    assert group.detector == SEMANTIC_ANN
    assert group.similarity > 0.9
