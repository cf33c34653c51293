"""Error taxonomy for similarity detection runs."""

from __future__ import annotations


class FuncdupesError(Exception):
    """Base class for all funcdupes errors."""


class InvalidOptionsError(FuncdupesError, ValueError):
    """Raised when detection options or a consensus strategy are malformed.

    Always raised before any detector runs.
    """


class RepresentationBuildError(FuncdupesError):
    """Raised when a single function cannot be turned into a representation.

    The builder catches this per function and records a skip instead of failing the batch.
    """


class DetectorUnavailableError(FuncdupesError):
    """Raised by a detector whose required inputs are missing for this run."""


class AggregationError(FuncdupesError, ValueError):
    """Raised when a consensus strategy references detectors that are not enabled."""


class DetectionCancelled(FuncdupesError):
    """Raised at a stage boundary when the caller requested cancellation."""
