"""
funcdupes - Find similar and duplicated Python functions.

Runs several independent detectors over per-function representations:
1. Exact/structural: alpha-renamed AST Merkle hashes, signature hashes
2. Structural-weighted: branch/loop/nesting/statement/parameter features
3. LSH: SimHash fingerprints banded for candidate generation
4. Semantic: approximate nearest neighbours over code embeddings

and merges their pairs into groups under a consensus strategy.

Example:
    from funcdupes import DetectionOptions, detect_similarities, extract_functions

    functions = extract_functions("./src")
    for group in detect_similarities(functions, DetectionOptions(threshold=0.9)):
        print(f"{group.members} ({group.similarity:.0%}, {group.refactoring_impact})")
"""

from .confidence import Adjustment, ConfidenceCalculator, ConfidenceResult
from .consensus import ConsensusAggregator, UnionFind
from .errors import (
    AggregationError,
    DetectionCancelled,
    DetectorUnavailableError,
    FuncdupesError,
    InvalidOptionsError,
    RepresentationBuildError,
)
from .extractor import FunctionExtractor, extract_functions
from .manager import DetectionReport, SimilarityManager, detect_similarities
from .models import (
    DetectionOptions,
    FunctionInfo,
    FunctionMetrics,
    FunctionRepresentation,
    FunctionSignature,
    IntersectionStrategy,
    MajorityStrategy,
    SimilarityGroup,
    SimilarityPair,
    SkipRecord,
    UnionStrategy,
    WeightedStrategy,
)
from .representation import HashCache, MappingEmbeddingProvider, RepresentationBuilder

try:
    from ._version import __version__, __version_tuple__
except ImportError:
    __version__ = "0.0.0+unknown"
    __version_tuple__ = (0, 0, 0, "+unknown")

__all__ = [
    "Adjustment",
    "AggregationError",
    "ConfidenceCalculator",
    "ConfidenceResult",
    "ConsensusAggregator",
    "DetectionCancelled",
    "DetectionOptions",
    "DetectionReport",
    "DetectorUnavailableError",
    "FuncdupesError",
    "FunctionExtractor",
    "FunctionInfo",
    "FunctionMetrics",
    "FunctionRepresentation",
    "FunctionSignature",
    "HashCache",
    "IntersectionStrategy",
    "InvalidOptionsError",
    "MajorityStrategy",
    "MappingEmbeddingProvider",
    "RepresentationBuildError",
    "RepresentationBuilder",
    "SimilarityGroup",
    "SimilarityManager",
    "SimilarityPair",
    "SkipRecord",
    "UnionFind",
    "UnionStrategy",
    "WeightedStrategy",
    "__version__",
    "__version_tuple__",
    "detect_similarities",
    "extract_functions",
]
