################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Configuration for a known-hard-iron magnetometer calibration run."""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from typing import TYPE_CHECKING
from typing import Any

import numpy as np

from oasis_magcal.calibration.calibration_types.measurement import Measurement
from oasis_magcal.calibration.config.calibration_params import CalibrationParams
from oasis_magcal.calibration.config.calibration_params import ParamsError
from oasis_magcal.calibration.math_utils.validation import as_matrix3
from oasis_magcal.calibration.math_utils.validation import as_vector3
from oasis_magcal.calibration.reference.reference_field import ConstantReferenceNorm
from oasis_magcal.calibration.reference.reference_field import ReferenceFieldError
from oasis_magcal.calibration.reference.reference_field import ReferenceNormSource
from oasis_magcal.calibration.state.parameter_layout import COMMON_AXIS_UNKNOWNS
from oasis_magcal.calibration.state.parameter_layout import GENERAL_UNKNOWNS
from oasis_magcal.calibration.state.parameter_layout import ParameterLayout


if TYPE_CHECKING:
    from oasis_magcal.calibration.calibrator.calibrator_listener import (
        CalibratorListener,
    )


# Minimum measurements for the general 9-parameter case
MINIMUM_MEASUREMENTS_GENERAL: int = GENERAL_UNKNOWNS + 1

# Minimum measurements for the 6-parameter common-axis case
MINIMUM_MEASUREMENTS_COMMON_AXIS: int = COMMON_AXIS_UNKNOWNS + 1

# Default for the common-axis assumption
DEFAULT_USE_COMMON_AXIS: bool = False


class CalibratorConfigError(ValueError):
    """Raised when calibrator configuration validation fails."""


def _coerce_reference_norm(value: Any) -> ReferenceNormSource | None:
    if value is None or isinstance(value, ReferenceNormSource):
        return value
    if isinstance(value, (int, float, np.floating, np.integer)):
        try:
            return ConstantReferenceNorm(float(value))
        except ReferenceFieldError as exc:
            raise CalibratorConfigError(str(exc)) from exc
    raise CalibratorConfigError(
        "reference_norm must be a positive number or a ReferenceNormSource"
    )


@dataclass(frozen=True)
class CalibratorConfig:
    """Optional-field configuration for a calibration run.

    Fields left as None make the configuration not ready. Measurements are
    held by reference and never copied.

    Attributes:
        measurements: Collection of measurements, or None
        bias_T: Known hard-iron bias in tesla, shape (3,), or None
        initial_matrix: Initial guess of the cross-axis matrix Mm, shape (3, 3)
        common_axis: True to hold the sub-diagonal entries of Mm at zero
        reference_norm: Positive norm in tesla or a per-measurement source
        listener: Optional start/end notification listener
        params: Solver parameters
    """

    measurements: Collection[Measurement] | None = None
    bias_T: np.ndarray | None = None
    initial_matrix: np.ndarray = field(
        default_factory=lambda: np.zeros((3, 3), dtype=np.float64)
    )
    common_axis: bool = DEFAULT_USE_COMMON_AXIS
    reference_norm: ReferenceNormSource | None = None
    listener: CalibratorListener | None = None
    params: CalibrationParams = field(default_factory=CalibrationParams.defaults)

    def __post_init__(self) -> None:
        """Validate and coerce configuration fields."""
        if self.measurements is not None:
            if not isinstance(self.measurements, Collection):
                raise CalibratorConfigError("measurements must be a collection")
            if not all(isinstance(m, Measurement) for m in self.measurements):
                raise CalibratorConfigError("measurements must be Measurement")

        try:
            if self.bias_T is not None:
                bias_T: np.ndarray = as_vector3(self.bias_T, "bias_T")
                bias_T.setflags(write=False)
                object.__setattr__(self, "bias_T", bias_T)
            initial_matrix: np.ndarray = as_matrix3(
                self.initial_matrix,
                "initial_matrix",
            )
        except ValueError as exc:
            raise CalibratorConfigError(str(exc)) from exc
        initial_matrix.setflags(write=False)
        object.__setattr__(self, "initial_matrix", initial_matrix)

        if not isinstance(self.common_axis, (bool, np.bool_)):
            raise CalibratorConfigError("common_axis must be a bool")
        object.__setattr__(self, "common_axis", bool(self.common_axis))

        object.__setattr__(
            self,
            "reference_norm",
            _coerce_reference_norm(self.reference_norm),
        )

        if self.listener is not None:
            for name in ("on_calibrate_start", "on_calibrate_end"):
                if not callable(getattr(self.listener, name, None)):
                    raise CalibratorConfigError(f"listener must implement {name}")

        if not isinstance(self.params, CalibrationParams):
            raise CalibratorConfigError("params must be CalibrationParams")
        try:
            self.params.validate()
        except ParamsError as exc:
            raise CalibratorConfigError(str(exc)) from exc

    def replace(self, **overrides: Any) -> CalibratorConfig:
        """Return a validated modified copy of the configuration."""
        return replace(self, **overrides)

    def minimum_required_measurements(self) -> int:
        """Return the minimum number of measurements for the current mode."""
        if self.common_axis:
            return MINIMUM_MEASUREMENTS_COMMON_AXIS
        return MINIMUM_MEASUREMENTS_GENERAL

    def is_ready(self) -> bool:
        """Return True when measurements, bias and reference norm are set."""
        return (
            self.measurements is not None
            and len(self.measurements) >= self.minimum_required_measurements()
            and self.bias_T is not None
            and self.reference_norm is not None
        )

    def layout(self) -> ParameterLayout:
        """Return the free-parameter layout for the current mode."""
        return ParameterLayout.for_mode(common_axis=self.common_axis)

    def initial_sensor_matrix(self) -> np.ndarray:
        """Return the initial M = I + Mm, upper triangular in common-axis mode."""
        M: np.ndarray = np.eye(3, dtype=np.float64) + self.initial_matrix
        if self.common_axis:
            M = np.triu(M)
        return M
