from __future__ import annotations

import pytest

from funcdupes.fingerprint import (
    band_values,
    fingerprint_similarity,
    hamming_distance,
    shingle_counts,
    simhash,
)

TOKENS = (
    "def <fn> ( v0 , v1 ) : v2 = 0 for v3 in v0 : if v3 > v1 : v2 += v3 return v2".split()
)


def test_identical_token_streams_share_a_fingerprint() -> None:
    assert simhash(TOKENS) == simhash(list(TOKENS))
    assert fingerprint_similarity(simhash(TOKENS), simhash(TOKENS), 64) == 1.0


def test_small_edits_keep_fingerprints_close() -> None:
    edited = list(TOKENS)
    edited[edited.index(">")] = ">="
    unrelated = "class Foo : pass import os print ( os . sep ) while True : break".split()

    near = hamming_distance(simhash(TOKENS), simhash(edited))
    far = hamming_distance(simhash(TOKENS), simhash(unrelated))

    assert near < far


def test_fingerprint_widths() -> None:
    wide = simhash(TOKENS, bits=128)

    assert 0 <= simhash(TOKENS) < 2**64
    assert 0 <= wide < 2**128
    with pytest.raises(ValueError):
        simhash(TOKENS, bits=32)


def test_empty_and_short_streams() -> None:
    assert simhash([]) == 0
    assert shingle_counts(["a", "b"]) == {("a", "b"): 1}
    assert sum(shingle_counts(["a", "b", "c", "d"]).values()) == 2 + 1


def test_band_values_split_fingerprint() -> None:
    fingerprint = 0x0123456789ABCDEF

    bands = band_values(fingerprint, 64, 8)

    assert len(bands) == 8
    assert bands[0] == 0xEF
    assert bands[-1] == 0x01
    with pytest.raises(ValueError):
        band_values(fingerprint, 64, 7)
