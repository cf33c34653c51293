from __future__ import annotations

import importlib.util
import json
import sys
from pathlib import Path

import pytest

from funcdupes.extractor import extract_functions

ROOT = Path(__file__).resolve().parents[1]
CORPUS = ROOT / "test_fixtures" / "lsh_tuning" / "corpus"
LABELS = ROOT / "test_fixtures" / "lsh_tuning" / "labels.json"


def _load_sweep_module(monkeypatch):
    spec = importlib.util.spec_from_file_location(
        "sweep_lsh_bands", ROOT / "scripts" / "sweep_lsh_bands.py"
    )
    module = importlib.util.module_from_spec(spec)
    # dataclasses resolve string annotations through sys.modules
    monkeypatch.setitem(sys.modules, spec.name, module)
    spec.loader.exec_module(module)
    return module


def test_labels_resolve_to_corpus_function_ids(monkeypatch) -> None:
    sweep = _load_sweep_module(monkeypatch)
    known_ids = {function.function_id for function in extract_functions(CORPUS, exclude_patterns=[])}

    positives = sweep.load_positive_pairs(LABELS, known_ids)

    assert len(positives) == 5
    assert ("text_tools.py::make_slug", "text_tools.py::slugify") in positives
    assert all(a < b for a, b in positives)


def test_unknown_labels_are_rejected(tmp_path: Path, monkeypatch) -> None:
    sweep = _load_sweep_module(monkeypatch)
    labels = tmp_path / "labels.json"
    labels.write_text(json.dumps({"positive_groups": [["a.py::f", "b.py::g"]]}))

    with pytest.raises(ValueError, match="not found in corpus"):
        sweep.load_positive_pairs(labels, {"a.py::f"})

    labels.write_text(json.dumps({"positive_groups": []}))
    with pytest.raises(ValueError, match="positive_groups"):
        sweep.load_positive_pairs(labels, {"a.py::f"})


def test_sweep_row_measures_candidates_and_confirmation(monkeypatch) -> None:
    sweep = _load_sweep_module(monkeypatch)
    positives = {("a", "b"), ("c", "d")}

    row = sweep.SweepRow.measure(
        bits=64,
        bands=8,
        total_pairs=10,
        candidates={("a", "b"), ("c", "d"), ("a", "c"), ("b", "d")},
        confirmed={("a", "b"), ("a", "c")},
        positives=positives,
    )

    assert row.rows_per_band == 8
    assert row.candidate_ratio == pytest.approx(0.4)
    assert row.candidate_recall == pytest.approx(1.0)
    assert row.confirmed_precision == pytest.approx(0.5)
    assert row.confirmed_recall == pytest.approx(0.5)
    assert row.f1 == pytest.approx(0.5)
