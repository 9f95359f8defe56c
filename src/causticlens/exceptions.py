from __future__ import annotations

import numpy as np


class CausticError(Exception):
    """Base class for all errors raised while designing a caustic lens."""


class ConfigurationError(CausticError, ValueError):
    """Missing or inconsistent inputs, detected before any solve runs."""


class DensityLoadError(CausticError, OSError):
    """A density image could not be read."""


class DegenerateGeometryError(CausticError, ArithmeticError):
    """
    A vector that must be normalized is (numerically) zero.

    `indices` lists the offending samples so the caller can report them.
    """

    def __init__(self, reason: str, indices: np.ndarray | None = None) -> None:
        self.reason = reason
        self.indices = np.zeros((0,), dtype=np.int64) if indices is None else np.asarray(indices, dtype=np.int64)
        super().__init__(self._message())

    def _message(self) -> str:
        if self.indices.size == 0:
            return self.reason
        return f"{self.reason} at {self.indices.size} sample(s) (first: {int(self.indices[0])})"

    def shifted(self, offset: int) -> "DegenerateGeometryError":
        """Same error with indices moved by `offset` (chunk-local -> global numbering)."""
        return DegenerateGeometryError(self.reason, self.indices + int(offset))


class SolverError(CausticError, RuntimeError):
    """The transport solver or the normal integrator failed to produce a result."""
