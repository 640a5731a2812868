################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Estimated magnetometer calibration produced by a successful fit."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from oasis_magcal.calibration.math_utils.validation import as_matrix3
from oasis_magcal.calibration.state.covariance import Covariance
from oasis_magcal.calibration.state.parameter_layout import GENERAL_UNKNOWNS


@dataclass(frozen=True)
class EstimationResult:
    """Cross-axis matrix estimate with fit statistics.

    Attributes:
        matrix: Estimated cross-axis matrix Mm (scale factors on the diagonal)
        covariance: 9x9 covariance in (sx, sy, sz, mxy, mxz, myx, myz, mzx,
            mzy) order
        chi_square: Weighted residual sum of squares
        mse: Chi-square per degree of freedom
        iterations: Number of accepted solver steps
        initial_cost: Weighted cost at the initial guess
        final_cost: Weighted cost at the estimate
        termination: Solver termination reason
    """

    matrix: np.ndarray
    covariance: Covariance
    chi_square: float
    mse: float
    iterations: int
    initial_cost: float
    final_cost: float
    termination: str

    def __post_init__(self) -> None:
        """Validate shapes and freeze the matrix buffer."""
        matrix: np.ndarray = as_matrix3(self.matrix, "matrix")
        matrix.setflags(write=False)
        object.__setattr__(self, "matrix", matrix)
        if self.covariance.dim() != GENERAL_UNKNOWNS:
            raise ValueError("covariance must be 9x9")

    def covariance_array(self) -> np.ndarray:
        """Return a copy of the 9x9 covariance matrix."""
        return self.covariance.as_array()

    def standard_deviations(self) -> np.ndarray:
        """Return the 1-sigma uncertainty of each parameter."""
        return self.covariance.standard_deviations()
