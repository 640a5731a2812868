################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Correction of raw magnetometer samples with an estimated calibration."""

from __future__ import annotations

from typing import Any

import numpy as np
from numpy.typing import NDArray

from oasis_magcal.calibration.calibration_types.estimation_result import (
    EstimationResult,
)
from oasis_magcal.calibration.calibrator.known_hard_iron_calibrator import (
    KnownHardIronCalibrator,
)
from oasis_magcal.calibration.math_utils.validation import TRIAD_COMPONENTS
from oasis_magcal.calibration.math_utils.validation import as_matrix3
from oasis_magcal.calibration.math_utils.validation import as_vector3


# Units: unitless. Meaning: reciprocal condition number below which I + Mm is
# treated as singular
_MATRIX_RCOND_MIN: float = 1e-12


class FluxDensityFixerError(ValueError):
    """Raised when a calibration cannot be applied."""


class MagneticFluxDensityFixer:
    """Removes hard-iron bias and cross-axis errors from raw samples.

    Inverts the sensor model raw = bias + (I + Mm) b_true.
    """

    def __init__(self, bias_T: Any, matrix: Any) -> None:
        """Initialize the fixer.

        Args:
            bias_T: Hard-iron bias in tesla, a 3-sequence or 3x1 matrix
            matrix: Cross-axis matrix Mm, shape (3, 3)

        Raises:
            FluxDensityFixerError: If the inputs are malformed or I + Mm is
                singular
        """
        try:
            bias: NDArray[np.float64] = as_vector3(bias_T, "bias_T")
            Mm: NDArray[np.float64] = as_matrix3(matrix, "matrix")
        except ValueError as exc:
            raise FluxDensityFixerError(str(exc)) from exc

        M: NDArray[np.float64] = np.eye(TRIAD_COMPONENTS, dtype=np.float64) + Mm
        if 1.0 / np.linalg.cond(M) < _MATRIX_RCOND_MIN:
            raise FluxDensityFixerError("I + Mm is singular")

        self._bias_T: NDArray[np.float64] = bias
        self._matrix: NDArray[np.float64] = Mm
        self._M_inv: NDArray[np.float64] = np.linalg.inv(M)

    @classmethod
    def from_result(
        cls,
        result: EstimationResult,
        bias_T: Any,
    ) -> MagneticFluxDensityFixer:
        """Create a fixer from an estimation result and its known bias."""
        return cls(bias_T, result.matrix)

    @classmethod
    def from_calibrator(
        cls,
        calibrator: KnownHardIronCalibrator,
    ) -> MagneticFluxDensityFixer:
        """Create a fixer from a calibrator's bias and last estimate."""
        result: EstimationResult | None = calibrator.result()
        bias_T: NDArray[np.float64] | None = calibrator.bias_T()
        if result is None or bias_T is None:
            raise FluxDensityFixerError("calibrator has no estimate")
        return cls.from_result(result, bias_T)

    def bias_T(self) -> NDArray[np.float64]:
        return self._bias_T.copy()

    def matrix(self) -> NDArray[np.float64]:
        return self._matrix.copy()

    def fix(self, raw_T: Any) -> NDArray[np.float64]:
        """Return the corrected flux density of one raw sample, shape (3,)."""
        try:
            raw: NDArray[np.float64] = as_vector3(raw_T, "raw_T")
        except ValueError as exc:
            raise FluxDensityFixerError(str(exc)) from exc
        return self._M_inv @ (raw - self._bias_T)

    def fix_many(self, raw_T: Any) -> NDArray[np.float64]:
        """Return the corrected flux density of stacked samples, shape (N, 3)."""
        raw: NDArray[np.float64] = np.asarray(raw_T, dtype=np.float64)
        if raw.ndim != 2 or raw.shape[1] != TRIAD_COMPONENTS:
            raise FluxDensityFixerError("raw_T must have shape (N, 3)")
        if not np.all(np.isfinite(raw)):
            raise FluxDensityFixerError("raw_T must contain finite values")
        return (raw - self._bias_T) @ self._M_inv.T
