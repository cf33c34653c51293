from __future__ import annotations

from pathlib import Path
from textwrap import dedent

from funcdupes.constants import CANONICAL_MERKLE, EXACT_HASH, STRUCTURAL_WEIGHTED
from funcdupes.extractor import extract_functions
from funcdupes.manager import SimilarityManager
from funcdupes.models import DetectionOptions, IntersectionStrategy

FIXTURE = Path(__file__).resolve().parents[1] / "test_fixtures" / "sample.py"


def test_integration_on_fixture_module() -> None:
    functions = extract_functions(FIXTURE)

    report = SimilarityManager().run(functions, DetectionOptions(threshold=0.9))

    members = {tuple(name.split("::")[1] for name in group.members) for group in report.groups}
    assert members == {
        ("calculate_sum", "compute_total"),
        ("build_user", "make_account"),
        ("check_email_format", "validate_email"),
    }
    priorities = [group.priority for group in report.groups]
    assert priorities == sorted(priorities, reverse=True)
    assert report.detector_pair_counts[EXACT_HASH] == 1
    assert report.detector_pair_counts[CANONICAL_MERKLE] == 1
    assert report.detector_pair_counts[STRUCTURAL_WEIGHTED] >= 3
    assert report.skipped == []


def test_integration_intersection_keeps_exact_duplicates(tmp_path: Path) -> None:
    functions = extract_functions(FIXTURE)

    report = SimilarityManager().run(
        functions,
        DetectionOptions(threshold=0.9, consensus=IntersectionStrategy()),
    )

    (group,) = report.groups
    assert group.members == ("sample.py::calculate_sum", "sample.py::compute_total")
    assert group.detector == "consensus-intersection"


def test_integration_on_mixed_project(tmp_path: Path) -> None:
    src_root = tmp_path / "project"
    src_root.mkdir()

    (src_root / "bad.py").write_text("def bad(:\n    pass")
    (src_root / "tests").mkdir()
    (src_root / "tests" / "test_skip.py").write_text(
        "def test_case(values):\n    total = 0\n    for value in values:\n        total += value\n"
        "    return total\n"
    )
    (src_root / "util.py").write_text(
        dedent(
            """
            def add_up(numbers):
                acc = 0
                for number in numbers:
                    acc += number
                return acc

            class Ledger:
                def total(self, entries):
                    result = 0
                    for entry in entries:
                        result += entry
                    return result
            """
        ).strip()
    )
    (src_root / "other.py").write_text(
        dedent(
            """
            def add_up(numbers):
                acc = 0
                for number in numbers:
                    acc += number
                return acc
            """
        ).strip()
    )

    functions = extract_functions(src_root)
    report = SimilarityManager().run(functions, DetectionOptions(threshold=0.9))

    assert not any("tests" in str(function.file_path) for function in functions)
    (group,) = report.groups
    assert group.members == ("other.py::add_up", "util.py::Ledger.total", "util.py::add_up")
    assert report.detector_pair_counts[CANONICAL_MERKLE] == 1
