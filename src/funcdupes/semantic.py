"""Semantic duplicate detection over code embeddings.

Embeddings are supplied by the caller (on ``FunctionInfo.embedding`` or
through an embedding provider). ``SentenceTransformerEmbeddingProvider``
computes them locally with sentence-transformers when the ``semantic``
extra is installed.
"""

from __future__ import annotations

import ast
import importlib
import logging
import math
import os
from collections import defaultdict
from collections.abc import Callable, Sequence

import numpy as np

from funcdupes.constants import (
    DEFAULT_ANN_MAX_PLANES,
    DEFAULT_ANN_PARTITION_SIZE,
    DEFAULT_ANN_SEED,
    DEFAULT_ANN_TOP_K,
    DEFAULT_BATCH_SIZE,
    DEFAULT_MODEL,
    SEMANTIC_ANN,
)
from funcdupes.detectors import BaseDetector, clamp_score, eligible, may_pair, size_diffs, sort_pairs
from funcdupes.errors import DetectorUnavailableError
from funcdupes.models import DetectionOptions, FunctionInfo, FunctionRepresentation, SimilarityPair

logger = logging.getLogger(__name__)


class SemanticBackendError(RuntimeError):
    """Raised when the embedding model cannot be loaded or run."""


def _configure_semantic_runtime_env() -> None:
    """Set runtime env guards to avoid optional framework noise/import paths."""
    os.environ.setdefault("USE_TF", "0")
    os.environ.setdefault("USE_FLAX", "0")
    os.environ.setdefault("TRANSFORMERS_NO_TF", "1")
    os.environ.setdefault("TOKENIZERS_PARALLELISM", "false")


def _require_dependency(module_name: str, install_hint: str) -> None:
    """Raise a clear error when a required dependency is unavailable."""
    try:
        importlib.import_module(module_name)
    except ModuleNotFoundError as exc:
        if exc.name != module_name:
            raise
        raise SemanticBackendError(
            f"{module_name} is required for semantic embeddings. Install with {install_hint}."
        ) from exc


def _is_cuda_oom_error(error: RuntimeError) -> bool:
    """Return True when an exception is likely a CUDA out-of-memory condition."""
    return "out of memory" in str(error).lower()


def _empty_cuda_cache() -> None:
    try:
        import torch

        if torch.cuda.is_available():
            torch.cuda.empty_cache()
    except Exception:
        logger.debug("Failed to clear CUDA cache after OOM", exc_info=True)


class SentenceTransformerEmbeddingProvider:
    """Embedding provider backed by a lazily loaded SentenceTransformer model.

    The model is owned by the provider instance; nothing is cached at module level.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        batch_size: int = DEFAULT_BATCH_SIZE,
        model=None,
    ) -> None:
        """Initialize the provider.

        :param model_name: Hugging Face model id.
        :param batch_size: Initial encode batch size; halved on CUDA OOM.
        :param model: Preloaded model object exposing ``encode`` (skips loading).
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.model_name = model_name
        self.batch_size = batch_size
        self._model = model
        self._vectors: dict[str, np.ndarray] = {}

    @property
    def model(self):
        if self._model is None:
            self._model = self._load_model()
        return self._model

    def _load_model(self):
        logger.info(f"Loading embedding model: {self.model_name}")
        _configure_semantic_runtime_env()
        _require_dependency("sentence_transformers", "pip install 'funcdupes[semantic]'")
        _require_dependency("torch", "pip install 'funcdupes[semantic]'")

        from sentence_transformers import SentenceTransformer

        try:
            return SentenceTransformer(self.model_name)
        except Exception as exc:
            raise SemanticBackendError(
                f"Could not load embedding model {self.model_name}: {exc}"
            ) from exc

    def _text_for(self, function: FunctionInfo) -> str:
        source = function.source
        if not source and function.ast_node is not None:
            source = ast.unparse(function.ast_node)
        return (source or "").strip()

    def encode(self, texts: list[str]) -> np.ndarray:
        """Encode texts, halving the batch size and finally falling back to CPU on OOM."""
        model = self.model
        current_batch_size = self.batch_size
        attempted_cpu_fallback = False
        while True:
            encode_kwargs = {
                "batch_size": current_batch_size,
                "show_progress_bar": len(texts) > 100,
                "convert_to_numpy": True,
                "normalize_embeddings": True,
            }
            if attempted_cpu_fallback:
                encode_kwargs["device"] = "cpu"
            try:
                return np.asarray(model.encode(texts, **encode_kwargs), dtype=np.float32)
            except RuntimeError as e:
                if not _is_cuda_oom_error(e):
                    raise SemanticBackendError(f"Embedding inference failed: {e}") from e
                if current_batch_size > 1:
                    next_batch_size = max(1, current_batch_size // 2)
                    logger.warning(
                        "CUDA OOM during semantic embedding at batch_size=%d; retrying with "
                        "batch_size=%d",
                        current_batch_size,
                        next_batch_size,
                    )
                    current_batch_size = next_batch_size
                    _empty_cuda_cache()
                    continue
                if attempted_cpu_fallback:
                    raise SemanticBackendError("CUDA OOM persisted on CPU fallback") from e
                logger.warning("CUDA OOM during semantic embedding at batch_size=1; retrying on CPU")
                attempted_cpu_fallback = True
                if hasattr(model, "to"):
                    model.to("cpu")
                _empty_cuda_cache()

    def prime(self, functions: Sequence[FunctionInfo]) -> None:
        """Encode every not-yet-seen function in one batched call."""
        pending = [function for function in functions if function.function_id not in self._vectors]
        if not pending:
            return
        logger.info(f"Computing embeddings for {len(pending)} functions")
        vectors = self.encode([self._text_for(function) for function in pending])
        for function, vector in zip(pending, vectors):
            self._vectors[function.function_id] = vector

    def embed(self, function: FunctionInfo) -> np.ndarray | None:
        if function.function_id not in self._vectors:
            self.prime([function])
        return self._vectors.get(function.function_id)


class EmbeddingIndex:
    """Approximate nearest-neighbour index using random-hyperplane partitions.

    Vectors are L2-normalized; a query probes its own partition and every
    partition one hyperplane flip away, then ranks candidates by exact cosine.
    """

    def __init__(
        self,
        vectors: np.ndarray,
        partition_size: int = DEFAULT_ANN_PARTITION_SIZE,
        max_planes: int = DEFAULT_ANN_MAX_PLANES,
        seed: int = DEFAULT_ANN_SEED,
    ) -> None:
        vectors = np.asarray(vectors, dtype=np.float64)
        if vectors.ndim != 2:
            raise ValueError("vectors must be a 2D array")
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        if np.any(norms == 0):
            raise ValueError("vectors must be non-zero")
        self.vectors = vectors / norms

        count, dim = self.vectors.shape
        if count <= partition_size:
            self.n_planes = 0
        else:
            self.n_planes = min(max_planes, math.ceil(math.log2(count / partition_size)))

        rng = np.random.default_rng(seed)
        self._planes = rng.standard_normal((self.n_planes, dim))
        self._codes = self._encode(self.vectors)

        partitions: dict[int, list[int]] = defaultdict(list)
        for index, code in enumerate(self._codes):
            partitions[code].append(index)
        self._partitions = {code: np.array(members) for code, members in partitions.items()}

    def __len__(self) -> int:
        return len(self.vectors)

    def _encode(self, vectors: np.ndarray) -> list[int]:
        if self.n_planes == 0:
            return [0] * len(vectors)
        signs = (vectors @ self._planes.T) > 0
        weights = 1 << np.arange(self.n_planes, dtype=np.int64)
        return [int(code) for code in signs.astype(np.int64) @ weights]

    def _probe(self, code: int) -> np.ndarray:
        codes = [code, *(code ^ (1 << plane) for plane in range(self.n_planes))]
        members = [self._partitions[probe] for probe in codes if probe in self._partitions]
        return np.unique(np.concatenate(members)) if members else np.empty(0, dtype=np.int64)

    def neighbours(
        self,
        index: int,
        top_k: int = DEFAULT_ANN_TOP_K,
        accept: Callable[[int], bool] | None = None,
    ) -> list[tuple[int, float]]:
        """Return up to ``top_k`` ``(index, cosine)`` neighbours of an indexed vector.

        :param index: Position of the query vector.
        :param top_k: Maximum number of neighbours returned.
        :param accept: Optional filter applied to candidates before ranking.
        """
        candidates = self._probe(self._codes[index])
        candidates = candidates[candidates != index]
        if accept is not None:
            mask = np.fromiter(
                (accept(int(candidate)) for candidate in candidates),
                dtype=bool,
                count=candidates.size,
            )
            candidates = candidates[mask]
        if candidates.size == 0:
            return []
        # rounding keeps parallel vectors at exactly 1.0
        similarities = np.round(self.vectors[candidates] @ self.vectors[index], 12)
        order = np.lexsort((candidates, -similarities))[:top_k]
        return [(int(candidates[i]), float(similarities[i])) for i in order]


class SemanticANNDetector(BaseDetector):
    """Pair functions whose embeddings are close in cosine similarity."""

    name = SEMANTIC_ANN
    description = "approximate nearest neighbours over code embeddings"

    def __init__(
        self,
        top_k: int = DEFAULT_ANN_TOP_K,
        partition_size: int = DEFAULT_ANN_PARTITION_SIZE,
        max_planes: int = DEFAULT_ANN_MAX_PLANES,
        seed: int = DEFAULT_ANN_SEED,
    ) -> None:
        if top_k < 1:
            raise ValueError("top_k must be >= 1")
        self.top_k = top_k
        self.partition_size = partition_size
        self.max_planes = max_planes
        self.seed = seed

    def is_available(self, representations: Sequence[FunctionRepresentation]) -> bool:
        return any(rep.embedding is not None for rep in representations)

    def _with_embeddings(
        self, representations: Sequence[FunctionRepresentation]
    ) -> list[FunctionRepresentation]:
        kept: list[FunctionRepresentation] = []
        dimension: int | None = None
        for rep in representations:
            if rep.embedding is None:
                continue
            if not np.any(rep.embedding):
                logger.warning(f"Dropping zero embedding for {rep.function_id}")
                continue
            if dimension is None:
                dimension = rep.embedding.shape[0]
            elif rep.embedding.shape[0] != dimension:
                logger.warning(
                    f"Dropping embedding for {rep.function_id}: dimension "
                    f"{rep.embedding.shape[0]} != {dimension}"
                )
                continue
            kept.append(rep)
        return kept

    def detect(
        self,
        representations: Sequence[FunctionRepresentation],
        options: DetectionOptions,
    ) -> list[SimilarityPair]:
        candidates = self._with_embeddings(eligible(representations, options))
        if len(candidates) < 2:
            raise DetectorUnavailableError(
                f"{self.name} needs at least two functions with embeddings, got {len(candidates)}"
            )

        index = EmbeddingIndex(
            np.stack([rep.embedding for rep in candidates]),
            partition_size=self.partition_size,
            max_planes=self.max_planes,
            seed=self.seed,
        )
        logger.info(
            f"Querying {len(candidates)} embeddings across {2 ** index.n_planes} partitions"
        )

        pairs: dict[tuple[str, str], SimilarityPair] = {}
        for i, a in enumerate(candidates):
            neighbours = index.neighbours(
                i, self.top_k, accept=lambda j, a=a: may_pair(a, candidates[j], options)
            )
            for j, cosine in neighbours:
                score = clamp_score(cosine)
                b = candidates[j]
                if score < options.threshold:
                    continue
                pair = SimilarityPair(
                    a.function_id,
                    b.function_id,
                    detector=self.name,
                    score=score,
                    explanation=f"embedding cosine similarity {score:.3f}",
                    metadata={"cosine": cosine, **size_diffs(a, b)},
                )
                pairs.setdefault(pair.key, pair)

        logger.info(f"Found {len(pairs)} semantic pairs above threshold {options.threshold}")
        return sort_pairs(pairs.values())
