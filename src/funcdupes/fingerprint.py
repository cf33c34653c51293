"""SimHash fingerprints over canonical token shingles."""

from __future__ import annotations

import hashlib
from collections import Counter
from collections.abc import Iterable, Sequence

import numpy as np

from funcdupes.constants import (
    DEFAULT_FINGERPRINT_BITS,
    DEFAULT_SHINGLE_SIZES,
    SUPPORTED_FINGERPRINT_BITS,
)

_SHINGLE_SEPARATOR = "\x1f"


def validate_bits(bits: int) -> int:
    if bits not in SUPPORTED_FINGERPRINT_BITS:
        allowed = ", ".join(str(value) for value in SUPPORTED_FINGERPRINT_BITS)
        raise ValueError(f"Fingerprint width must be one of {allowed}, got {bits}")
    return bits


def shingle_counts(
    tokens: Sequence[str],
    sizes: Iterable[int] = DEFAULT_SHINGLE_SIZES,
) -> Counter[tuple[str, ...]]:
    """Count token n-grams for each size in ``sizes``.

    Token streams shorter than every size collapse into a single shingle.

    :param tokens: Canonical tokens.
    :param sizes: N-gram sizes.
    :return: Shingle multiplicities.
    """
    counts: Counter[tuple[str, ...]] = Counter()
    sizes = sorted(set(sizes))
    if not tokens:
        return counts
    if len(tokens) < sizes[0]:
        counts[tuple(tokens)] += 1
        return counts

    for size in sizes:
        for start in range(len(tokens) - size + 1):
            counts[tuple(tokens[start : start + size])] += 1
    return counts


def simhash(
    tokens: Sequence[str],
    bits: int = DEFAULT_FINGERPRINT_BITS,
    shingle_sizes: Iterable[int] = DEFAULT_SHINGLE_SIZES,
) -> int:
    """Compute a ``bits``-wide SimHash of a token stream.

    Each shingle votes +weight/-weight on every bit according to its
    BLAKE2b digest; a bit is set when the weighted vote is positive.

    :param tokens: Canonical tokens.
    :param bits: Fingerprint width (64 or 128).
    :param shingle_sizes: N-gram sizes used for shingling.
    :return: Fingerprint as a non-negative integer.
    """
    validate_bits(bits)
    counts = shingle_counts(tokens, shingle_sizes)
    if not counts:
        return 0

    digest_size = bits // 8
    digests = b"".join(
        hashlib.blake2b(
            _SHINGLE_SEPARATOR.join(shingle).encode("utf-8"), digest_size=digest_size
        ).digest()
        for shingle in counts
    )
    weights = np.fromiter(counts.values(), dtype=np.float64, count=len(counts))
    bit_matrix = np.unpackbits(np.frombuffer(digests, dtype=np.uint8)).reshape(len(counts), bits)
    signs = bit_matrix.astype(np.float64) * 2.0 - 1.0
    votes = weights @ signs
    return int.from_bytes(np.packbits(votes > 0).tobytes(), "big")


def hamming_distance(left: int, right: int) -> int:
    return (left ^ right).bit_count()


def fingerprint_similarity(left: int, right: int, bits: int) -> float:
    """Similarity in ``[0, 1]`` from the Hamming distance of two fingerprints."""
    return 1.0 - hamming_distance(left, right) / bits


def band_values(fingerprint: int, bits: int, bands: int) -> tuple[int, ...]:
    """Split a fingerprint into ``bands`` equal-width integer bands."""
    if bands < 1 or bits % bands:
        raise ValueError(f"Band count {bands} must evenly divide fingerprint width {bits}")
    rows = bits // bands
    mask = (1 << rows) - 1
    return tuple((fingerprint >> (index * rows)) & mask for index in range(bands))
