"""Two-stage locality-sensitive hashing over SimHash fingerprints."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping, Sequence
from itertools import combinations
from types import MappingProxyType

from funcdupes.constants import DEFAULT_LSH_BANDS, DEFAULT_LSH_MAX_BUCKET_SIZE, LSH_FINGERPRINT
from funcdupes.detectors import BaseDetector, eligible, may_pair, size_diffs, sort_pairs
from funcdupes.errors import DetectorUnavailableError
from funcdupes.fingerprint import band_values, fingerprint_similarity, hamming_distance, validate_bits
from funcdupes.models import DetectionOptions, FunctionRepresentation, SimilarityPair

logger = logging.getLogger(__name__)


class BandIndex:
    """Read-only map from ``(band index, band value)`` to function ids.

    Built once per detection call from ``(function_id, fingerprint)`` entries.
    """

    def __init__(
        self,
        entries: Iterable[tuple[str, int]],
        bits: int,
        bands: int = DEFAULT_LSH_BANDS,
        max_bucket_size: int | None = DEFAULT_LSH_MAX_BUCKET_SIZE,
    ) -> None:
        """Index fingerprints by band.

        :param entries: ``(function_id, fingerprint)`` pairs.
        :param bits: Fingerprint width.
        :param bands: Number of equal-width bands; must divide ``bits``.
        :param max_bucket_size: Buckets larger than this produce no candidates;
            ``None`` disables the cap.
        """
        validate_bits(bits)
        if bands < 1 or bits % bands:
            raise ValueError(f"Band count {bands} must evenly divide fingerprint width {bits}")
        if max_bucket_size is not None and max_bucket_size < 2:
            raise ValueError("max_bucket_size must be >= 2")

        self.bits = bits
        self.bands = bands
        self.max_bucket_size = max_bucket_size

        buckets: dict[tuple[int, int], list[str]] = defaultdict(list)
        for function_id, fingerprint in entries:
            for band, value in enumerate(band_values(fingerprint, bits, bands)):
                buckets[(band, value)].append(function_id)
        self._buckets: Mapping[tuple[int, int], tuple[str, ...]] = MappingProxyType(
            {key: tuple(sorted(ids)) for key, ids in buckets.items()}
        )

    def __len__(self) -> int:
        return len(self._buckets)

    def bucket(self, band: int, value: int) -> tuple[str, ...]:
        return self._buckets.get((band, value), ())

    def candidate_pairs(self) -> Counter[tuple[str, str]]:
        """Count, for every co-bucketed pair, the number of bands it shares."""
        shared: Counter[tuple[str, str]] = Counter()
        skipped = 0
        for (band, _), ids in self._buckets.items():
            if len(ids) < 2:
                continue
            if self.max_bucket_size is not None and len(ids) > self.max_bucket_size:
                skipped += 1
                logger.debug(f"Skipping oversized LSH bucket in band {band} ({len(ids)} functions)")
                continue
            for pair in combinations(ids, 2):
                shared[pair] += 1
        if skipped:
            logger.debug(f"Skipped {skipped} oversized LSH buckets")
        return shared


class LSHFingerprintDetector(BaseDetector):
    """Band fingerprints for candidates, then confirm with exact Hamming distance."""

    name = LSH_FINGERPRINT
    description = "SimHash fingerprint LSH with Hamming confirmation"

    def __init__(
        self,
        bands: int = DEFAULT_LSH_BANDS,
        max_bucket_size: int | None = DEFAULT_LSH_MAX_BUCKET_SIZE,
    ) -> None:
        self.bands = bands
        self.max_bucket_size = max_bucket_size

    def detect(
        self,
        representations: Sequence[FunctionRepresentation],
        options: DetectionOptions,
    ) -> list[SimilarityPair]:
        candidates = eligible(representations, options)
        if len(candidates) < 2:
            return []

        widths = {rep.fingerprint_bits for rep in candidates}
        if len(widths) != 1:
            raise DetectorUnavailableError(f"Mixed fingerprint widths: {sorted(widths)}")
        bits = widths.pop()

        index = BandIndex(
            ((rep.function_id, rep.fingerprint) for rep in candidates),
            bits=bits,
            bands=self.bands,
            max_bucket_size=self.max_bucket_size,
        )
        by_id = {rep.function_id: rep for rep in candidates}
        shared_bands = index.candidate_pairs()
        logger.info(f"LSH produced {len(shared_bands)} candidate pairs from {len(candidates)} functions")

        pairs: list[SimilarityPair] = []
        for (id_a, id_b), shared in shared_bands.items():
            a, b = by_id[id_a], by_id[id_b]
            if not may_pair(a, b, options):
                continue
            score = fingerprint_similarity(a.fingerprint, b.fingerprint, bits)
            if score < options.threshold:
                continue
            distance = hamming_distance(a.fingerprint, b.fingerprint)
            merkle_confirmed = a.structural_hash == b.structural_hash
            explanation = (
                "identical structure (merkle confirmed)"
                if merkle_confirmed
                else f"fingerprints differ in {distance}/{bits} bits"
            )
            pairs.append(
                SimilarityPair(
                    id_a,
                    id_b,
                    detector=self.name,
                    score=score,
                    explanation=explanation,
                    metadata={
                        "hamming_distance": distance,
                        "bits": bits,
                        "shared_bands": shared,
                        "merkle_confirmed": merkle_confirmed,
                        **size_diffs(a, b),
                    },
                )
            )

        logger.info(f"Confirmed {len(pairs)} fingerprint pairs")
        return sort_pairs(pairs)
