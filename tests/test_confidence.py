from __future__ import annotations

from pathlib import Path

import pytest

from funcdupes.confidence import ConfidenceCalculator
from funcdupes.constants import EXACT_HASH
from funcdupes.models import FunctionRepresentation, SimilarityPair, StructuralFeatures


def _rep(function_id: str, name: str, signature_hash: str = "sig") -> FunctionRepresentation:
    return FunctionRepresentation(
        function_id=function_id,
        file_path=Path(f"{function_id}.py"),
        line_range=(1, 5),
        token_count=20,
        structural_hash="hash",
        fingerprint=0,
        fingerprint_bits=64,
        signature_hash=signature_hash,
        features=StructuralFeatures(),
        display_name=name,
        line_count=5,
    )


def _pair(score: float = 0.8) -> SimilarityPair:
    return SimilarityPair("a", "b", EXACT_HASH, score, "match")


def test_no_adjustments_without_representations() -> None:
    result = ConfidenceCalculator().score(_pair(), group_size=2)

    assert result.final_score == pytest.approx(0.8)
    assert result.base_score == pytest.approx(0.8)
    assert result.adjustments == ()


def test_same_name_bonus() -> None:
    calculator = ConfidenceCalculator([_rep("a", "load"), _rep("b", "load")])

    result = calculator.score(_pair(), group_size=2)

    assert result.final_score == pytest.approx(0.85)
    assert [adjustment.factor for adjustment in result.adjustments] == ["same_name"]


def test_different_names_get_no_bonus() -> None:
    calculator = ConfidenceCalculator({"a": _rep("a", "load"), "b": _rep("b", "save")})

    assert calculator.score(_pair(), group_size=2).final_score == pytest.approx(0.8)


def test_overload_variants_are_penalised() -> None:
    calculator = ConfidenceCalculator(
        [
            _rep("a", "load", "s1"),
            _rep("b", "load", "s2"),
            _rep("c", "load", "s3"),
        ]
    )

    result = calculator.score(_pair(), group_size=3, group_members=("a", "b", "c"))

    factors = {adjustment.factor: adjustment.adjustment for adjustment in result.adjustments}
    assert factors["same_name"] == pytest.approx(0.05)
    assert factors["overload_variants"] == pytest.approx(-0.2)
    assert result.final_score == pytest.approx(0.65)


def test_large_group_penalty() -> None:
    result = ConfidenceCalculator().score(_pair(), group_size=9)

    assert result.final_score == pytest.approx(0.75)
    assert result.adjustments[0].factor == "large_group"
    assert ConfidenceCalculator().score(_pair(), group_size=8).adjustments == ()


def test_scores_are_clamped() -> None:
    high = ConfidenceCalculator([_rep("a", "f"), _rep("b", "f")]).score(_pair(1.0), group_size=2)
    low = ConfidenceCalculator(
        [_rep("a", "f", "s1"), _rep("b", "f", "s2")], overload_penalty=5.0
    ).score(_pair(0.1), group_size=2)

    assert high.final_score == 1.0
    assert low.final_score == 0.0
