################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Structured solver configuration for magnetometer calibration."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import fields
from dataclasses import replace
from typing import Any

import numpy as np


# Jacobian computed in closed form
JACOBIAN_ANALYTIC: str = "analytic"
# Jacobian computed with central differences
JACOBIAN_NUMERIC: str = "numeric"

# Maximum number of Levenberg-Marquardt iterations
SOLVER_MAX_ITERS: int = 100
# Relative cost decrease below which the fit is converged
SOLVER_FTOL: float = 1e-12
# Relative step size below which the fit is converged
SOLVER_XTOL: float = 1e-12
# Initial damping relative to the largest normal-matrix diagonal entry
SOLVER_INITIAL_DAMPING: float = 1e-3
# Damping multiplier applied after a rejected step
SOLVER_DAMPING_INCREASE: float = 10.0
# Damping divisor applied after an accepted step
SOLVER_DAMPING_DECREASE: float = 10.0
# Consecutive rejected steps tolerated before the fit fails
SOLVER_MAX_REJECTIONS: int = 16
# Singular values below rank_rtol * max are treated as zero
SOLVER_RANK_RTOL: float = 1e-10
# Jacobian evaluation method
SOLVER_JACOBIAN: str = JACOBIAN_ANALYTIC
# Relative central-difference step for numeric Jacobians
SOLVER_NUMERIC_STEP: float = 1e-7


class ParamsError(Exception):
    """Raised when calibration parameter validation fails."""


def _require_positive(value: float, name: str) -> None:
    """Require a positive value."""
    if not np.isfinite(value) or value <= 0.0:
        raise ParamsError(f"{name} must be positive")


def _require_positive_int(value: int, name: str) -> None:
    """Require a positive integer value."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise ParamsError(f"{name} must be an int")
    if value <= 0:
        raise ParamsError(f"{name} must be positive")


@dataclass(frozen=True)
class SolverParams:
    """Levenberg-Marquardt configuration parameters."""

    # Maximum number of iterations
    max_iters: int = SOLVER_MAX_ITERS
    # Relative cost decrease tolerance
    ftol: float = SOLVER_FTOL
    # Relative step size tolerance
    xtol: float = SOLVER_XTOL
    # Initial damping relative to max(diag(H))
    initial_damping: float = SOLVER_INITIAL_DAMPING
    # Damping multiplier after a rejected step
    damping_increase: float = SOLVER_DAMPING_INCREASE
    # Damping divisor after an accepted step
    damping_decrease: float = SOLVER_DAMPING_DECREASE
    # Consecutive rejections tolerated before failing
    max_rejections: int = SOLVER_MAX_REJECTIONS
    # Relative singular value threshold for rank checks
    rank_rtol: float = SOLVER_RANK_RTOL
    # Jacobian method identifier
    jacobian: str = SOLVER_JACOBIAN
    # Relative step for numeric Jacobians
    numeric_step: float = SOLVER_NUMERIC_STEP


@dataclass(frozen=True)
class CalibrationParams:
    """Complete configuration tree for magnetometer calibration."""

    solver: SolverParams

    @classmethod
    def defaults(cls) -> CalibrationParams:
        """Return the default calibration parameter tree."""
        return cls(solver=SolverParams())

    def validate(self) -> None:
        """Validate parameter invariants and constraints."""
        _require_positive_int(self.solver.max_iters, "solver.max_iters")
        _require_positive(self.solver.ftol, "solver.ftol")
        _require_positive(self.solver.xtol, "solver.xtol")
        _require_positive(self.solver.initial_damping, "solver.initial_damping")
        _require_positive_int(self.solver.max_rejections, "solver.max_rejections")
        _require_positive(self.solver.rank_rtol, "solver.rank_rtol")
        _require_positive(self.solver.numeric_step, "solver.numeric_step")

        if self.solver.damping_increase <= 1.0:
            raise ParamsError("solver.damping_increase must be greater than 1")
        if self.solver.damping_decrease <= 1.0:
            raise ParamsError("solver.damping_decrease must be greater than 1")
        if self.solver.jacobian not in {JACOBIAN_ANALYTIC, JACOBIAN_NUMERIC}:
            raise ParamsError("solver.jacobian must be 'analytic' or 'numeric'")

    def replace(self, **namespace_overrides: Any) -> CalibrationParams:
        """Return a modified copy of the parameters."""
        return replace(self, **namespace_overrides)

    def as_nested_dict(self) -> dict[str, Any]:
        """Return a nested dict representation for debugging."""
        return _dataclass_to_dict(self)


def _dataclass_to_dict(value: Any) -> Any:
    """Convert dataclasses and numpy arrays into plain Python values."""
    if hasattr(value, "__dataclass_fields__"):
        return {
            field.name: _dataclass_to_dict(getattr(value, field.name))
            for field in fields(value)
        }
    if isinstance(value, np.ndarray):
        return value.tolist()
    return value
