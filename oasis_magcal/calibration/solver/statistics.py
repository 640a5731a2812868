################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Goodness-of-fit statistics and parameter covariance at convergence."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from oasis_magcal.calibration.solver.problem import Linearization
from oasis_magcal.calibration.state.covariance import Covariance
from oasis_magcal.calibration.state.parameter_layout import ParameterLayout


class StatisticsError(Exception):
    """Raised when fit statistics cannot be computed."""


@dataclass(frozen=True)
class FitStatistics:
    """Statistics derived from the converged normal equations.

    Attributes:
        covariance: Parameter covariance in canonical 9x9 order
        chi_square: Weighted residual sum of squares r^T W r
        mse: chi_square / (N - P)
        degrees_of_freedom: N - P
    """

    covariance: Covariance
    chi_square: float
    mse: float
    degrees_of_freedom: int


def _inverse_normal_matrix(
    H: NDArray[np.float64],
    layout: ParameterLayout,
    rank_rtol: float,
) -> NDArray[np.float64]:
    if layout.identifiable_dim() == layout.dim():
        try:
            return np.asarray(np.linalg.inv(H), dtype=np.float64)
        except np.linalg.LinAlgError as exc:
            raise StatisticsError("normal matrix is singular") from exc

    # Unobservable rotation directions carry no information and are dropped
    return np.asarray(
        np.linalg.pinv(H, rcond=rank_rtol, hermitian=True),
        dtype=np.float64,
    )


def compute_statistics(
    lin: Linearization,
    weights: NDArray[np.float64],
    layout: ParameterLayout,
    rank_rtol: float,
) -> FitStatistics:
    """Return covariance, chi-square and MSE for a converged linearization."""
    count: int = int(lin.residual.shape[0])
    dof: int = count - layout.dim()
    if dof <= 0:
        raise StatisticsError("not enough measurements for fit statistics")

    r: NDArray[np.float64] = lin.residual
    chi_square: float = float(np.sum(weights * r * r))
    mse: float = chi_square / float(dof)

    H_inv: NDArray[np.float64] = _inverse_normal_matrix(lin.H, layout, rank_rtol)
    cov_free: NDArray[np.float64] = mse * H_inv
    cov_free = 0.5 * (cov_free + cov_free.T)
    if not np.all(np.isfinite(cov_free)):
        raise StatisticsError("covariance contains non-finite values")

    covariance: Covariance = Covariance(layout.embed_covariance(cov_free))

    return FitStatistics(
        covariance=covariance,
        chi_square=chi_square,
        mse=mse,
        degrees_of_freedom=dof,
    )
