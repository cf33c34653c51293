"""Shared package-level defaults and tunables used across detection modules."""

from __future__ import annotations

EXACT_HASH = "exact-hash"
STRUCTURAL_WEIGHTED = "structural-weighted"
CANONICAL_MERKLE = "canonical-merkle"
LSH_FINGERPRINT = "lsh-fingerprint"
SEMANTIC_ANN = "semantic-ann"

DETECTOR_IDS = (
    EXACT_HASH,
    STRUCTURAL_WEIGHTED,
    CANONICAL_MERKLE,
    LSH_FINGERPRINT,
    SEMANTIC_ANN,
)

DEFAULT_THRESHOLD = 0.8
DEFAULT_MIN_LINES = 3
DEFAULT_MIN_GROUP_SIZE = 2
DEFAULT_MAJORITY_THRESHOLD = 0.5
DEFAULT_WEIGHTED_THRESHOLD = 0.5

# Exact-Hash scores
STRUCTURAL_MATCH_SCORE = 1.0
SIGNATURE_MATCH_SCORE = 0.6

# Fingerprint / LSH tuning. Bands must divide the fingerprint width.
SUPPORTED_FINGERPRINT_BITS = (64, 128)
DEFAULT_FINGERPRINT_BITS = 64
DEFAULT_LSH_BANDS = 8
DEFAULT_SHINGLE_SIZES = (3, 4, 5)
DEFAULT_LSH_MAX_BUCKET_SIZE = 256

# Structural-Weighted feature weights (branch, loop, nesting, statements, parameters)
STRUCTURAL_FEATURE_WEIGHTS: dict[str, float] = {
    "branch_count": 0.25,
    "loop_count": 0.20,
    "max_nesting": 0.15,
    "statement_count": 0.30,
    "parameter_count": 0.10,
}
DEFAULT_SIZE_BUCKET_WIDTH = 32

# Semantic-ANN
DEFAULT_ANN_TOP_K = 10
DEFAULT_ANN_PARTITION_SIZE = 64
DEFAULT_ANN_MAX_PLANES = 12
DEFAULT_ANN_SEED = 1337

# Embedding provider
DEFAULT_MODEL = "Alibaba-NLP/gte-modernbert-base"
DEFAULT_BATCH_SIZE = 8

# Confidence adjustments
SAME_NAME_BONUS = 0.05
OVERLOAD_VARIANT_PENALTY = 0.1
LARGE_GROUP_PENALTY = 0.05
LARGE_GROUP_SIZE = 8

# Refactoring impact cutoffs
HIGH_IMPACT_COMPLEXITY = 8
HIGH_IMPACT_LINES = 100
MEDIUM_IMPACT_COMPLEXITY = 5
MEDIUM_IMPACT_LINES = 50
