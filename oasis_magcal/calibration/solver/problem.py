################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Linearization builder for magnetometer calibration solver."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from oasis_magcal.calibration.config.calibration_params import JACOBIAN_NUMERIC
from oasis_magcal.calibration.config.calibration_params import SolverParams
from oasis_magcal.calibration.solver.residuals import MagnitudeResidual
from oasis_magcal.calibration.solver.residuals import MagnitudeResidualModel
from oasis_magcal.calibration.state.parameter_layout import ParameterLayout


@dataclass(frozen=True)
class Linearization:
    """Weighted normal equations at a parameter point.

    Attributes:
        H: Normal matrix J^T W J, shape (P, P)
        b: Gradient term J^T W r, shape (P,)
        cost: Weighted sum of squared residuals r^T W r
        residual: Unweighted residuals in tesla, shape (N,)
        J: Unweighted Jacobian, shape (N, P)
    """

    H: NDArray[np.float64]
    b: NDArray[np.float64]
    cost: float
    residual: NDArray[np.float64]
    J: NDArray[np.float64]


def build_linearization(
    model: MagnitudeResidualModel,
    params: NDArray[np.float64],
    layout: ParameterLayout,
    solver: SolverParams,
) -> Linearization:
    """Build the Gauss-Newton linearization for a free-parameter vector."""
    M: NDArray[np.float64] = layout.unpack(params)
    evaluated: MagnitudeResidual
    if solver.jacobian == JACOBIAN_NUMERIC:
        evaluated = model.evaluate_numeric(M, layout, solver.numeric_step)
    else:
        evaluated = model.evaluate(M, layout)

    weights: NDArray[np.float64] = model.weights()
    J: NDArray[np.float64] = evaluated.J
    r: NDArray[np.float64] = evaluated.residual
    JtW: NDArray[np.float64] = J.T * weights
    H: NDArray[np.float64] = JtW @ J
    H = 0.5 * (H + H.T)
    b: NDArray[np.float64] = JtW @ r
    cost: float = float(np.sum(weights * r * r))

    return Linearization(H=H, b=b, cost=cost, residual=r, J=J)


def numerical_rank(H: NDArray[np.float64], rtol: float) -> int:
    """Return the number of singular values above rtol times the largest."""
    singular_values: NDArray[np.float64] = np.linalg.svd(H, compute_uv=False)
    if singular_values.size == 0 or singular_values[0] <= 0.0:
        return 0
    return int(np.sum(singular_values > rtol * singular_values[0]))
