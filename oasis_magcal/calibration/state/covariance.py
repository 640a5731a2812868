################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Covariance of estimated cross-axis parameters."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray


# Symmetry tolerance relative to the largest absolute entry
SYM_RTOL: float = 1e-9

# Negative eigenvalue tolerance relative to the largest absolute entry
PSD_RTOL: float = 1e-10


class CovarianceError(Exception):
    """Raised when a parameter covariance is malformed or indefinite."""


def _magnitude(P: NDArray[np.float64]) -> float:
    return float(np.max(np.abs(P))) if P.size else 0.0


@dataclass(frozen=True)
class Covariance:
    """Symmetric parameter covariance.

    Cross-axis parameters are dimensionless and well below one, so their
    variances are tiny. Every tolerance is therefore taken relative to the
    largest entry of P rather than in absolute terms.

    Attributes:
        P: Covariance in parameter order, shape (N, N)
    """

    P: NDArray[np.float64]

    def __post_init__(self) -> None:
        """Copy P to float64 and check it is square, finite and symmetric."""
        P: NDArray[np.float64] = np.array(self.P, dtype=np.float64)
        if P.ndim != 2 or P.shape[0] != P.shape[1]:
            raise CovarianceError(f"covariance must be square, got {P.shape}")
        if not np.all(np.isfinite(P)):
            raise CovarianceError("covariance must be finite")
        atol: float = SYM_RTOL * _magnitude(P)
        if np.max(np.abs(P - P.T), initial=0.0) > atol:
            raise CovarianceError("covariance must be symmetric")
        P.setflags(write=False)
        object.__setattr__(self, "P", P)

    @classmethod
    def zeros(cls, dim: int) -> Covariance:
        """Return an all-zero covariance of the given dimension."""
        if dim <= 0:
            raise CovarianceError("covariance dimension must be positive")
        return cls(np.zeros((dim, dim), dtype=np.float64))

    def dim(self) -> int:
        return int(self.P.shape[0])

    def as_array(self) -> NDArray[np.float64]:
        """Return a writable copy of P."""
        return np.array(self.P, dtype=np.float64)

    def variances(self) -> NDArray[np.float64]:
        return np.diag(self.P).copy()

    def standard_deviations(self) -> NDArray[np.float64]:
        """Return the 1-sigma uncertainties, clipping round-off negatives."""
        return np.sqrt(np.clip(np.diag(self.P), 0.0, None))

    def block(self, indices: NDArray[np.int64]) -> NDArray[np.float64]:
        """Return the sub-covariance of the given parameter indices."""
        idx: NDArray[np.int64] = np.asarray(indices, dtype=np.int64)
        return np.array(self.P[np.ix_(idx, idx)], dtype=np.float64)

    def is_psd(self, *, rtol: float = PSD_RTOL) -> bool:
        """Return True when no eigenvalue is meaningfully negative."""
        magnitude: float = _magnitude(self.P)
        if magnitude == 0.0:
            return True
        smallest: float = float(np.linalg.eigvalsh(self.P)[0])
        return smallest >= -rtol * magnitude

    def assert_psd(self, *, rtol: float = PSD_RTOL) -> None:
        """Raise CovarianceError when the covariance is indefinite."""
        if not self.is_psd(rtol=rtol):
            raise CovarianceError("covariance is not positive semi-definite")
