################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Magnitude residuals and Jacobians for magnetometer calibration.

Sensor model: raw = bias + M b_true with M = I + Mm. Only ||b_true|| is known,
so each measurement yields the scalar residual

    r_i = ||M^-1 (raw_i - bias)|| - n_i

With y = M^-1 d and u = y / ||y||, the gradient with respect to the entries
of M is dr/dM = -(M^-T u) y^T.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from oasis_magcal.calibration.state.parameter_layout import ParameterLayout


# Units: unitless. Meaning: reciprocal condition number below which M is singular
_MATRIX_RCOND_MIN: float = 1e-12

# Units: T. Meaning: minimum corrected field norm for a defined gradient
_FIELD_NORM_EPS: float = 1e-30


class ResidualError(Exception):
    """Raised when residuals cannot be evaluated at a parameter point."""


@dataclass(frozen=True)
class MagnitudeResidual:
    """Container for stacked magnitude residuals and their Jacobian.

    Attributes:
        residual: Residuals in tesla, shape (N,)
        prediction: Corrected field norms ||M^-1 d|| in tesla, shape (N,)
        J: Jacobian with respect to the free parameters, shape (N, P)
    """

    residual: NDArray[np.float64]
    prediction: NDArray[np.float64]
    J: NDArray[np.float64]


def _checked_inverse(M: NDArray[np.float64]) -> NDArray[np.float64]:
    mat: NDArray[np.float64] = np.asarray(M, dtype=np.float64)
    if not np.all(np.isfinite(mat)):
        raise ResidualError("matrix must be finite")
    if 1.0 / np.linalg.cond(mat) < _MATRIX_RCOND_MIN:
        raise ResidualError("sensor matrix is singular")
    try:
        return np.asarray(np.linalg.inv(mat), dtype=np.float64)
    except np.linalg.LinAlgError as exc:
        raise ResidualError("sensor matrix is singular") from exc


class MagnitudeResidualModel:
    """Stacked magnitude residuals for a fixed set of measurements."""

    def __init__(
        self,
        raw_T: NDArray[np.float64],
        bias_T: NDArray[np.float64],
        reference_norms_T: NDArray[np.float64],
        stddevs_T: NDArray[np.float64],
    ) -> None:
        raw: NDArray[np.float64] = np.asarray(raw_T, dtype=np.float64)
        if raw.ndim != 2 or raw.shape[1] != 3:
            raise ValueError("raw_T must have shape (N, 3)")
        count: int = int(raw.shape[0])
        bias: NDArray[np.float64] = np.asarray(bias_T, dtype=np.float64)
        if bias.shape != (3,):
            raise ValueError("bias_T must have shape (3,)")
        norms: NDArray[np.float64] = np.asarray(reference_norms_T, dtype=np.float64)
        stddevs: NDArray[np.float64] = np.asarray(stddevs_T, dtype=np.float64)
        if norms.shape != (count,) or stddevs.shape != (count,):
            raise ValueError("reference norms and stddevs must have shape (N,)")
        if np.any(stddevs <= 0.0):
            raise ValueError("stddevs must be positive")

        self._d: NDArray[np.float64] = raw - bias
        self._norms: NDArray[np.float64] = norms
        self._weights: NDArray[np.float64] = 1.0 / (stddevs * stddevs)

    def count(self) -> int:
        """Return the number of measurements."""
        return int(self._d.shape[0])

    def weights(self) -> NDArray[np.float64]:
        """Return the least-squares weights 1 / stddev^2."""
        return self._weights.copy()

    def residuals(self, M: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the magnitude residuals for the sensor matrix M."""
        M_inv: NDArray[np.float64] = _checked_inverse(M)
        y: NDArray[np.float64] = self._d @ M_inv.T
        return np.linalg.norm(y, axis=1) - self._norms

    def cost(self, M: NDArray[np.float64]) -> float:
        """Return the weighted sum of squared residuals r^T W r."""
        r: NDArray[np.float64] = self.residuals(M)
        return float(np.sum(self._weights * r * r))

    def evaluate(
        self,
        M: NDArray[np.float64],
        layout: ParameterLayout,
    ) -> MagnitudeResidual:
        """Return residuals and the analytic Jacobian w.r.t. free parameters."""
        M_inv: NDArray[np.float64] = _checked_inverse(M)
        y: NDArray[np.float64] = self._d @ M_inv.T
        y_norm: NDArray[np.float64] = np.linalg.norm(y, axis=1)
        if np.any(y_norm <= _FIELD_NORM_EPS):
            raise ResidualError("corrected field is zero; gradient is undefined")
        u: NDArray[np.float64] = y / y_norm[:, None]

        # Row i of v is M^-T u_i, so dr_i/dM[k, l] = -v[i, k] * y[i, l]
        v: NDArray[np.float64] = u @ M_inv
        J: NDArray[np.float64] = np.empty(
            (self.count(), layout.dim()),
            dtype=np.float64,
        )
        for entry in layout.entries():
            J[:, entry.index] = -v[:, entry.row] * y[:, entry.col]

        return MagnitudeResidual(
            residual=y_norm - self._norms,
            prediction=y_norm,
            J=J,
        )

    def evaluate_numeric(
        self,
        M: NDArray[np.float64],
        layout: ParameterLayout,
        rel_step: float,
    ) -> MagnitudeResidual:
        """Return residuals and a central-difference Jacobian."""
        params: NDArray[np.float64] = layout.pack(M)
        residual: NDArray[np.float64] = self.residuals(M)
        J: NDArray[np.float64] = np.empty(
            (self.count(), layout.dim()),
            dtype=np.float64,
        )
        for index in range(layout.dim()):
            step: float = rel_step * max(1.0, abs(float(params[index])))
            forward: NDArray[np.float64] = params.copy()
            backward: NDArray[np.float64] = params.copy()
            forward[index] += step
            backward[index] -= step
            r_forward: NDArray[np.float64] = self.residuals(layout.unpack(forward))
            r_backward: NDArray[np.float64] = self.residuals(layout.unpack(backward))
            J[:, index] = (r_forward - r_backward) / (2.0 * step)

        return MagnitudeResidual(
            residual=residual,
            prediction=residual + self._norms,
            J=J,
        )
