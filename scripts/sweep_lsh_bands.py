#!/usr/bin/env python
"""Sweep LSH fingerprint width and band count against a labelled corpus.

Reports, per ``(bits, bands)`` layout, how many candidate pairs banding
produces, how many labelled duplicate pairs survive banding, and how many
survive Hamming confirmation.

Labels are function ids as produced by ``extract_functions`` on the corpus
root, grouped into lists of mutual duplicates.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict, dataclass
from itertools import combinations
from math import comb
from pathlib import Path

from funcdupes.constants import SUPPORTED_FINGERPRINT_BITS
from funcdupes.extractor import extract_functions
from funcdupes.lsh import BandIndex, LSHFingerprintDetector
from funcdupes.models import DetectionOptions
from funcdupes.pairs import ordered_pair_key
from funcdupes.representation import HashCache, RepresentationBuilder

BAND_CHOICES = (2, 4, 8, 16, 32)


def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator else 0.0


@dataclass(frozen=True)
class SweepRow:
    """Single band layout evaluation row."""

    bits: int
    bands: int
    rows_per_band: int
    candidates: int
    candidate_ratio: float
    candidate_recall: float
    confirmed: int
    confirmed_precision: float
    confirmed_recall: float
    f1: float

    @classmethod
    def measure(
        cls,
        *,
        bits: int,
        bands: int,
        total_pairs: int,
        candidates: set[tuple[str, str]],
        confirmed: set[tuple[str, str]],
        positives: set[tuple[str, str]],
    ) -> SweepRow:
        precision = _ratio(len(confirmed & positives), len(confirmed))
        recall = _ratio(len(confirmed & positives), len(positives))
        return cls(
            bits=bits,
            bands=bands,
            rows_per_band=bits // bands,
            candidates=len(candidates),
            candidate_ratio=_ratio(len(candidates), total_pairs),
            candidate_recall=_ratio(len(candidates & positives), len(positives)),
            confirmed=len(confirmed),
            confirmed_precision=precision,
            confirmed_recall=recall,
            f1=_ratio(2 * precision * recall, precision + recall) if precision + recall else 0.0,
        )


def load_positive_pairs(labels_path: Path, known_ids: set[str]) -> set[tuple[str, str]]:
    """Expand labelled duplicate groups into ordered id pairs.

    :param labels_path: JSON file with a ``positive_groups`` list of id lists.
    :param known_ids: Function ids extracted from the corpus.
    :raises ValueError: If the labels are malformed or name unknown functions.
    :return: Ordered function id pairs expected to be reported.
    """
    groups = json.loads(labels_path.read_text()).get("positive_groups")
    if not isinstance(groups, list) or not groups:
        raise ValueError(f"{labels_path} must define a non-empty 'positive_groups' list")

    positives: set[tuple[str, str]] = set()
    for group in groups:
        unknown = sorted(set(group) - known_ids)
        if unknown:
            raise ValueError(f"Labelled functions not found in corpus: {', '.join(unknown)}")
        positives.update(ordered_pair_key(a, b) for a, b in combinations(sorted(set(group)), 2))
    return positives


def _evaluate(
    *,
    corpus_path: Path,
    labels_path: Path,
    bits_options: list[int],
    band_options: list[int],
    threshold: float,
    min_lines: int,
) -> list[SweepRow]:
    functions = extract_functions(corpus_path, exclude_patterns=[])
    positives = load_positive_pairs(labels_path, {function.function_id for function in functions})
    options = DetectionOptions(threshold=threshold, min_lines=min_lines)
    cache = HashCache()

    rows: list[SweepRow] = []
    for bits in bits_options:
        representations = RepresentationBuilder(cache=cache, bits=bits).build(functions).representations
        for bands in (bands for bands in band_options if bits % bands == 0):
            index = BandIndex(
                ((rep.function_id, rep.fingerprint) for rep in representations),
                bits=bits,
                bands=bands,
            )
            detector = LSHFingerprintDetector(bands=bands)
            rows.append(
                SweepRow.measure(
                    bits=bits,
                    bands=bands,
                    total_pairs=comb(len(representations), 2),
                    candidates=set(index.candidate_pairs()),
                    confirmed={pair.key for pair in detector.detect(representations, options)},
                    positives=positives,
                )
            )

    rows.sort(key=lambda row: (row.f1, row.candidate_recall, -row.candidate_ratio), reverse=True)
    return rows


def _print_rows(rows: list[SweepRow], top_n: int) -> None:
    print("Top rows:")
    for idx, row in enumerate(rows[:top_n], start=1):
        print(
            f"  {idx:02d}. bits={row.bits} bands={row.bands} (r={row.rows_per_band}) "
            f"candidates={row.candidates} ({row.candidate_ratio:.1%} of all pairs) "
            f"candidate_recall={row.candidate_recall:.3f} confirmed={row.confirmed} "
            f"precision={row.confirmed_precision:.3f} recall={row.confirmed_recall:.3f} "
            f"f1={row.f1:.3f}"
        )


def main() -> int:
    """Entry point."""
    parser = argparse.ArgumentParser(
        description="Sweep LSH fingerprint widths and band counts on a labelled corpus."
    )
    parser.add_argument(
        "--corpus-path",
        type=Path,
        default=Path("test_fixtures/lsh_tuning/corpus"),
        help="Root path of the synthetic corpus.",
    )
    parser.add_argument(
        "--labels-path",
        type=Path,
        default=Path("test_fixtures/lsh_tuning/labels.json"),
        help="Path to labels.json with expected duplicate groups.",
    )
    parser.add_argument(
        "--bits",
        type=int,
        nargs="*",
        default=list(SUPPORTED_FINGERPRINT_BITS),
        help="Fingerprint widths to sweep.",
    )
    parser.add_argument(
        "--bands",
        type=int,
        nargs="*",
        default=list(BAND_CHOICES),
        help="Band counts to sweep; counts that do not divide the width are skipped.",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=0.8,
        help="Confirmation threshold on 1 - hamming/bits.",
    )
    parser.add_argument(
        "--min-lines",
        type=int,
        default=0,
        help="Minimum lines of code for a function to be compared.",
    )
    parser.add_argument(
        "--top-n",
        type=int,
        default=10,
        help="Number of best rows to print.",
    )
    parser.add_argument(
        "--json-out",
        type=Path,
        default=Path("test_fixtures/lsh_tuning/lsh_band_report.json"),
        help="Path to write full sweep output JSON.",
    )
    args = parser.parse_args()

    rows = _evaluate(
        corpus_path=args.corpus_path,
        labels_path=args.labels_path,
        bits_options=args.bits,
        band_options=args.bands,
        threshold=args.threshold,
        min_lines=args.min_lines,
    )

    print("LSH band sweep (synthetic corpus guardrail)")
    print(f"Corpus: {args.corpus_path}")
    print(f"Labels: {args.labels_path}")
    print(f"Threshold: {args.threshold:.2f}")
    _print_rows(rows, top_n=args.top_n)

    payload = {
        "corpus_path": str(args.corpus_path),
        "labels_path": str(args.labels_path),
        "threshold": args.threshold,
        "rows": [asdict(row) for row in rows],
    }
    args.json_out.parent.mkdir(parents=True, exist_ok=True)
    args.json_out.write_text(json.dumps(payload, indent=2))
    print(f"\nWrote sweep report: {args.json_out}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
