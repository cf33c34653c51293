from __future__ import annotations

import ast

import numpy as np
import pytest

from funcdupes.models import FunctionInfo, FunctionSignature
from funcdupes.representation import (
    HashCache,
    MappingEmbeddingProvider,
    RepresentationBuilder,
    signature_text,
)
from tests.conftest import ADD_PAIR_SOURCE, RENAMED_ADD_PAIR_SOURCE, make_function, make_functions


def test_renamed_functions_share_hash_and_fingerprint() -> None:
    functions = make_functions(ADD_PAIR_SOURCE, RENAMED_ADD_PAIR_SOURCE)

    result = RepresentationBuilder().build(functions)

    first, second = result.representations
    assert result.skipped == []
    assert first.structural_hash == second.structural_hash
    assert first.fingerprint == second.fingerprint
    assert first.features == second.features
    assert first.signature_hash != second.signature_hash
    assert first.display_name == "add_all"


def test_invalid_inputs_are_skipped_not_raised() -> None:
    good = make_function(ADD_PAIR_SOURCE)
    no_ast = FunctionInfo("module.py::ghost", "module.py", 1, 3)
    not_a_function = FunctionInfo(
        "module.py::assign", "module.py", 1, 1, ast_node=ast.parse("x = 1")
    )
    duplicate = make_function(RENAMED_ADD_PAIR_SOURCE, function_id=good.function_id)

    result = RepresentationBuilder().build([good, None, no_ast, not_a_function, duplicate])

    assert [rep.function_id for rep in result.representations] == [good.function_id]
    reasons = {record.function_id: record.reason for record in result.skipped}
    assert reasons["<input 1>"] == "not a function record"
    assert reasons["module.py::ghost"] == "missing or non-function AST"
    assert reasons["module.py::assign"] == "missing or non-function AST"
    assert reasons[good.function_id] == "duplicate function id"


def test_build_handles_none_and_empty_inputs() -> None:
    assert RepresentationBuilder().build(None).representations == []
    assert RepresentationBuilder().build([]).skipped == []


def test_tokens_are_regenerated_when_missing() -> None:
    function = make_function(ADD_PAIR_SOURCE)
    assert not function.tokens

    (rep,) = RepresentationBuilder().build([function]).representations

    assert rep.token_count > 10


def test_cache_is_reused_across_builds() -> None:
    cache = HashCache()
    functions = make_functions(ADD_PAIR_SOURCE, RENAMED_ADD_PAIR_SOURCE)

    RepresentationBuilder(cache=cache).build(functions)
    misses = cache.misses
    RepresentationBuilder(cache=cache).build(functions)

    assert cache.misses == misses
    assert cache.hits >= 2 * len(functions)
    cache.clear()
    assert len(cache) == 0


def test_fingerprint_width_is_configurable() -> None:
    functions = make_functions(ADD_PAIR_SOURCE)

    (rep,) = RepresentationBuilder(bits=128).build(functions).representations

    assert rep.fingerprint_bits == 128
    with pytest.raises(ValueError):
        RepresentationBuilder(bits=96)


def test_embeddings_from_provider_and_record() -> None:
    first, second = make_functions(ADD_PAIR_SOURCE, RENAMED_ADD_PAIR_SOURCE)
    second.embedding = [0.0, 1.0]
    provider = MappingEmbeddingProvider({first.function_id: [1.0, 0.0]})

    reps = RepresentationBuilder(embedding_provider=provider).build([first, second]).representations

    assert reps[0].embedding.tolist() == [1.0, 0.0]
    assert reps[1].embedding.tolist() == [0.0, 1.0]
    assert not reps[0].embedding.flags.writeable
    assert isinstance(second.embedding, list)


def test_provider_failures_become_warnings() -> None:
    class BrokenProvider:
        def embed(self, function):
            raise RuntimeError("backend down")

    (function,) = make_functions(ADD_PAIR_SOURCE)

    result = RepresentationBuilder(embedding_provider=BrokenProvider()).build([function])

    assert len(result.representations) == 1
    assert result.representations[0].embedding is None
    assert any("backend down" in warning for warning in result.warnings)


def test_non_finite_embeddings_are_ignored() -> None:
    function = make_function(ADD_PAIR_SOURCE, embedding=[np.nan, 1.0])

    result = RepresentationBuilder().build([function])

    assert result.representations[0].embedding is None
    assert result.warnings


def test_provider_is_primed_once_with_pending_functions() -> None:
    class PrimingProvider:
        def __init__(self) -> None:
            self.primed = []

        def prime(self, functions):
            self.primed.append([function.function_id for function in functions])

        def embed(self, function):
            return [1.0, 1.0]

    first, second = make_functions(ADD_PAIR_SOURCE, RENAMED_ADD_PAIR_SOURCE)
    second.embedding = [0.5, 0.5]
    provider = PrimingProvider()

    RepresentationBuilder(embedding_provider=provider).build([first, second])

    assert provider.primed == [[first.function_id]]


def test_signature_text_prefers_parser_signature() -> None:
    function = make_function(
        """
        def parse(text: str, strict: bool = False) -> dict:
            return {}
        """
    )
    root = function.ast_node

    assert signature_text(function, root) == "parse(str,bool)->dict"
    function.signature = FunctionSignature("parse", ("bytes",), "dict")
    assert signature_text(function, root) == "parse(bytes)->dict"


def test_malformed_ast_and_tokens_are_skipped_not_raised() -> None:
    good = make_function(ADD_PAIR_SOURCE)
    broken_ast = FunctionInfo(
        "x.py::broken", "x.py", 1, 5, ast_node=ast.FunctionDef(name="broken", body=[])
    )
    bad_tokens = make_function(RENAMED_ADD_PAIR_SOURCE)
    bad_tokens.tokens = [1, 2, 3]

    result = RepresentationBuilder().build([good, broken_ast, bad_tokens])

    assert [rep.function_id for rep in result.representations] == [good.function_id]
    reasons = {record.function_id: record.reason for record in result.skipped}
    assert reasons["x.py::broken"].startswith("malformed function AST or tokens")
    assert reasons[bad_tokens.function_id] == "token stream contains non-string tokens"
