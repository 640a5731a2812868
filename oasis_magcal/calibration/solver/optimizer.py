################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Levenberg-Marquardt optimizer for magnetometer calibration."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from oasis_magcal.calibration.config.calibration_params import SolverParams
from oasis_magcal.calibration.solver.problem import Linearization
from oasis_magcal.calibration.solver.problem import build_linearization
from oasis_magcal.calibration.solver.problem import numerical_rank
from oasis_magcal.calibration.solver.residuals import MagnitudeResidualModel
from oasis_magcal.calibration.solver.residuals import ResidualError
from oasis_magcal.calibration.state.parameter_layout import ParameterLayout


# Termination: residuals or gradient vanished
TERMINATION_ZERO_GRADIENT: str = "zero_gradient"
# Termination: relative cost decrease below ftol
TERMINATION_FTOL: str = "ftol"
# Termination: least-damped step below xtol
TERMINATION_XTOL: str = "xtol"
# Termination: iteration limit reached
TERMINATION_MAX_ITERS: str = "max_iters"

# Units: unitless. Meaning: damping floor relative to max(diag(H))
_MIN_RELATIVE_DAMPING: float = 1e-15

_LOG: logging.Logger = logging.getLogger(__name__)


class OptimizerError(Exception):
    """Raised when the fit fails to converge or becomes singular."""


@dataclass(frozen=True)
class SolverReport:
    """Summary of a Levenberg-Marquardt run.

    Attributes:
        params: Converged free-parameter vector of M = I + Mm
        linearization: Normal equations at the converged parameters
        iterations: Number of accepted steps
        initial_cost: Cost at the starting point
        final_cost: Cost at the converged point
        termination: Termination reason identifier
    """

    params: NDArray[np.float64]
    linearization: Linearization
    iterations: int
    initial_cost: float
    final_cost: float
    termination: str


def _linearize(
    model: MagnitudeResidualModel,
    params: NDArray[np.float64],
    layout: ParameterLayout,
    solver: SolverParams,
) -> Linearization:
    try:
        lin: Linearization = build_linearization(model, params, layout, solver)
    except ResidualError as exc:
        raise OptimizerError(str(exc)) from exc

    if not np.isfinite(lin.cost) or not np.all(np.isfinite(lin.H)):
        raise OptimizerError("non-finite cost or normal matrix")

    rank: int = numerical_rank(lin.H, solver.rank_rtol)
    if rank < layout.identifiable_dim():
        raise OptimizerError(
            f"normal matrix is singular (rank {rank} < {layout.identifiable_dim()})"
        )
    return lin


def _trial_cost(
    model: MagnitudeResidualModel,
    params: NDArray[np.float64],
    layout: ParameterLayout,
) -> float:
    try:
        cost: float = model.cost(layout.unpack(params))
    except ResidualError:
        # Step crossed a singular matrix; treat as a failed step
        return float("inf")
    if not np.isfinite(cost):
        return float("inf")
    return cost


def _max_diag(H: NDArray[np.float64]) -> float:
    if H.size == 0:
        return 0.0
    return float(np.max(np.diag(H)))


def _solve(
    H: NDArray[np.float64],
    b: NDArray[np.float64],
    damping: float,
) -> NDArray[np.float64]:
    dim: int = int(H.shape[0])
    H_damped: NDArray[np.float64] = H + np.eye(dim, dtype=np.float64) * damping
    try:
        delta: NDArray[np.float64] = np.asarray(
            np.linalg.solve(H_damped, -b),
            dtype=np.float64,
        )
    except np.linalg.LinAlgError as exc:
        raise OptimizerError("damped normal equations are singular") from exc
    if not np.all(np.isfinite(delta)):
        raise OptimizerError("damped normal equations are singular")
    return delta


def optimize(
    model: MagnitudeResidualModel,
    params0: NDArray[np.float64],
    layout: ParameterLayout,
    solver: SolverParams,
) -> SolverReport:
    """Run Levenberg-Marquardt iterations from params0.

    Raises OptimizerError on a singular system or when the cost cannot be
    reduced after max_rejections consecutive damping increases.
    """
    params: NDArray[np.float64] = np.array(params0, dtype=np.float64)
    lin: Linearization = _linearize(model, params, layout, solver)
    initial_cost: float = lin.cost

    damping: float = solver.initial_damping * _max_diag(lin.H)

    iterations: int = 0
    termination: str = TERMINATION_MAX_ITERS

    while iterations < solver.max_iters:
        if lin.cost == 0.0 or not np.any(lin.b):
            termination = TERMINATION_ZERO_GRADIENT
            break

        rejections: int = 0
        trial: float = float("inf")
        delta: NDArray[np.float64] = np.zeros_like(params)
        step_small: bool = False
        while True:
            delta = _solve(lin.H, lin.b, damping)
            trial = _trial_cost(model, params + delta, layout)
            step_norm: float = float(np.linalg.norm(delta))
            step_small = step_norm <= solver.xtol * (
                float(np.linalg.norm(params)) + solver.xtol
            )
            if trial < lin.cost:
                break
            if rejections == 0 and step_small:
                # Least-damped step is negligible: no further decrease possible
                break
            rejections += 1
            damping *= solver.damping_increase
            if rejections > solver.max_rejections:
                raise OptimizerError(
                    f"cost not reduced after {rejections} damping increases"
                )

        if trial >= lin.cost:
            termination = TERMINATION_XTOL
            break

        previous_cost: float = lin.cost
        params = params + delta
        lin = _linearize(model, params, layout, solver)
        iterations += 1
        damping = max(
            damping / solver.damping_decrease,
            _MIN_RELATIVE_DAMPING * _max_diag(lin.H),
        )

        _LOG.debug(
            "LM iteration %d: cost %.6e -> %.6e, damping %.3e",
            iterations,
            previous_cost,
            lin.cost,
            damping,
        )

        if previous_cost - lin.cost <= solver.ftol * previous_cost:
            termination = TERMINATION_FTOL
            break
        if step_small:
            termination = TERMINATION_XTOL
            break

    _LOG.debug(
        "LM finished after %d iterations (%s): cost %.6e -> %.6e",
        iterations,
        termination,
        initial_cost,
        lin.cost,
    )

    return SolverReport(
        params=params,
        linearization=lin,
        iterations=iterations,
        initial_cost=initial_cost,
        final_cost=lin.cost,
        termination=termination,
    )
