################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Magnetometer calibrator for a known hard-iron bias and field norm.

The calibrator estimates the soft-iron cross-axis matrix Mm of the sensor
model

    raw = bias + (I + Mm) b_true

from measurements whose true flux density norm is known, either as a single
constant or per measurement through a reference field provider. Only
magnitudes are compared, so the fit needs measurements spread over many
orientations but no knowledge of the sensor attitude.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Collection
from typing import Any

import numpy as np
from numpy.typing import NDArray

from oasis_magcal.calibration.calibration_types.estimation_result import (
    EstimationResult,
)
from oasis_magcal.calibration.calibration_types.measurement import Measurement
from oasis_magcal.calibration.calibration_types.measurement import MeasurementType
from oasis_magcal.calibration.calibrator.calibrator_listener import (
    CalibratorListener,
)
from oasis_magcal.calibration.calibrator.calibrator_state import CalibrationError
from oasis_magcal.calibration.calibrator.calibrator_state import CalibratorState
from oasis_magcal.calibration.calibrator.calibrator_state import LockedError
from oasis_magcal.calibration.calibrator.calibrator_state import NotReadyError
from oasis_magcal.calibration.config.calibration_params import CalibrationParams
from oasis_magcal.calibration.config.calibrator_config import CalibratorConfig
from oasis_magcal.calibration.config.calibrator_config import CalibratorConfigError
from oasis_magcal.calibration.math_utils.validation import TRIAD_COMPONENTS
from oasis_magcal.calibration.math_utils.validation import as_finite_float
from oasis_magcal.calibration.reference.reference_field import ReferenceFieldError
from oasis_magcal.calibration.reference.reference_field import ReferenceNormSource
from oasis_magcal.calibration.reference.reference_field import reference_norms
from oasis_magcal.calibration.solver.optimizer import OptimizerError
from oasis_magcal.calibration.solver.optimizer import SolverReport
from oasis_magcal.calibration.solver.optimizer import optimize
from oasis_magcal.calibration.solver.residuals import MagnitudeResidualModel
from oasis_magcal.calibration.solver.statistics import FitStatistics
from oasis_magcal.calibration.solver.statistics import StatisticsError
from oasis_magcal.calibration.solver.statistics import compute_statistics
from oasis_magcal.calibration.state.covariance import CovarianceError
from oasis_magcal.calibration.state.parameter_layout import MATRIX_POSITIONS
from oasis_magcal.calibration.state.parameter_layout import PARAM_NAME_MXY
from oasis_magcal.calibration.state.parameter_layout import PARAM_NAME_MXZ
from oasis_magcal.calibration.state.parameter_layout import PARAM_NAME_MYX
from oasis_magcal.calibration.state.parameter_layout import PARAM_NAME_MYZ
from oasis_magcal.calibration.state.parameter_layout import PARAM_NAME_MZX
from oasis_magcal.calibration.state.parameter_layout import PARAM_NAME_MZY
from oasis_magcal.calibration.state.parameter_layout import PARAM_NAME_SX
from oasis_magcal.calibration.state.parameter_layout import PARAM_NAME_SY
from oasis_magcal.calibration.state.parameter_layout import PARAM_NAME_SZ
from oasis_magcal.calibration.state.parameter_layout import ParameterLayout


_LOG: logging.Logger = logging.getLogger(__name__)

# Matrix position of every cross-axis entry by name
_ENTRY_POSITIONS: dict[str, tuple[int, int]] = {
    name: (row, col) for name, row, col in MATRIX_POSITIONS
}


class KnownHardIronCalibrator:
    """Estimates the cross-axis matrix of a magnetometer with known bias.

    All mutators are rejected with LockedError while a calibration runs.
    Results are None until the first successful calibrate() and are replaced
    as a whole on every later success.
    """

    def __init__(
        self,
        *,
        measurements: Collection[Measurement] | None = None,
        bias_T: Any = None,
        common_axis: bool = False,
        initial_matrix: Any = None,
        reference_norm: float | ReferenceNormSource | None = None,
        listener: CalibratorListener | None = None,
        params: CalibrationParams | None = None,
    ) -> None:
        """Initialize the calibrator.

        Args:
            measurements: Measurements held by reference
            bias_T: Known hard-iron bias in tesla, a 3-sequence or 3x1 matrix
            common_axis: True to assume the sensor axes share a common frame
            initial_matrix: Initial guess of Mm, zeros when omitted
            reference_norm: True field norm in tesla or a per-measurement source
            listener: Optional start/end listener
            params: Solver parameters, defaults when omitted

        Raises:
            CalibratorConfigError: If any argument is invalid
        """
        overrides: dict[str, Any] = {}
        if initial_matrix is not None:
            overrides["initial_matrix"] = initial_matrix
        if params is not None:
            overrides["params"] = params

        self._config: CalibratorConfig = CalibratorConfig(
            measurements=measurements,
            bias_T=bias_T,
            common_axis=common_axis,
            reference_norm=reference_norm,
            listener=listener,
            **overrides,
        )
        self._lock: threading.Lock = threading.Lock()
        self._running: bool = False
        self._result: EstimationResult | None = None

    ############################################################################
    # State
    ############################################################################

    def state(self) -> CalibratorState:
        """Return the current lifecycle state."""
        with self._lock:
            if self._running:
                return CalibratorState.RUNNING
            if self._config.is_ready():
                return CalibratorState.READY
            return CalibratorState.NOT_READY

    def is_running(self) -> bool:
        """Return True while a calibration is in progress."""
        with self._lock:
            return self._running

    def is_ready(self) -> bool:
        """Return True when enough data is configured to calibrate."""
        return self._config.is_ready()

    def minimum_required_measurements(self) -> int:
        """Return the minimum number of measurements for the current mode."""
        return self._config.minimum_required_measurements()

    def measurement_type(self) -> MeasurementType:
        """Return the kind of measurement this calibrator consumes."""
        return MeasurementType.STANDARD_DEVIATION_BODY_MAGNETIC_FLUX_DENSITY

    def is_ordered_measurements_required(self) -> bool:
        """Measurements may be supplied in any order."""
        return False

    def is_quality_scores_required(self) -> bool:
        """Quality scores are not used by the fit."""
        return False

    def config(self) -> CalibratorConfig:
        """Return the current configuration snapshot."""
        return self._config

    ############################################################################
    # Configuration
    ############################################################################

    def _update(self, **overrides: Any) -> None:
        # The new configuration is fully validated before it replaces the old
        with self._lock:
            if self._running:
                raise LockedError("calibrator is running")
            self._config = self._config.replace(**overrides)

    def measurements(self) -> Collection[Measurement] | None:
        return self._config.measurements

    def set_measurements(self, measurements: Collection[Measurement] | None) -> None:
        """Set the measurements, held by reference."""
        self._update(measurements=measurements)

    def listener(self) -> CalibratorListener | None:
        return self._config.listener

    def set_listener(self, listener: CalibratorListener | None) -> None:
        self._update(listener=listener)

    def common_axis(self) -> bool:
        return self._config.common_axis

    def set_common_axis(self, common_axis: bool) -> None:
        """Enable or disable the common-axis assumption."""
        self._update(common_axis=common_axis)

    def params(self) -> CalibrationParams:
        return self._config.params

    def set_params(self, params: CalibrationParams) -> None:
        self._update(params=params)

    def reference_norm(self) -> ReferenceNormSource | None:
        return self._config.reference_norm

    def set_reference_norm(self, reference_norm: float | ReferenceNormSource) -> None:
        """Set the true field norm in tesla or a per-measurement norm source."""
        self._update(reference_norm=reference_norm)

    # Bias

    def bias_T(self) -> NDArray[np.float64] | None:
        """Return a copy of the bias in tesla, shape (3,), or None."""
        if self._config.bias_T is None:
            return None
        return np.array(self._config.bias_T, dtype=np.float64)

    def bias_matrix(self) -> NDArray[np.float64] | None:
        """Return a copy of the bias as a 3x1 column matrix, or None."""
        if self._config.bias_T is None:
            return None
        return np.array(self._config.bias_T, dtype=np.float64).reshape(
            TRIAD_COMPONENTS, 1
        )

    def bias_x(self) -> float | None:
        return self._bias_component(0)

    def bias_y(self) -> float | None:
        return self._bias_component(1)

    def bias_z(self) -> float | None:
        return self._bias_component(2)

    def _bias_component(self, axis: int) -> float | None:
        if self._config.bias_T is None:
            return None
        return float(self._config.bias_T[axis])

    def set_bias(self, bias_T: Any) -> None:
        """Set the bias from a 3-sequence or a 3x1 matrix in tesla."""
        self._update(bias_T=bias_T)

    def set_bias_coordinates(self, x_T: float, y_T: float, z_T: float) -> None:
        """Set the bias from its three components in tesla."""
        self._update(bias_T=self._coordinates((x_T, y_T, z_T), "bias"))

    def set_bias_x(self, x_T: float) -> None:
        self._set_bias_component(0, x_T)

    def set_bias_y(self, y_T: float) -> None:
        self._set_bias_component(1, y_T)

    def set_bias_z(self, z_T: float) -> None:
        self._set_bias_component(2, z_T)

    def _set_bias_component(self, axis: int, value_T: float) -> None:
        component: float = self._coordinates((value_T,), "bias")[0]
        with self._lock:
            if self._running:
                raise LockedError("calibrator is running")
            bias_T: NDArray[np.float64] = (
                np.zeros(TRIAD_COMPONENTS, dtype=np.float64)
                if self._config.bias_T is None
                else np.array(self._config.bias_T, dtype=np.float64)
            )
            bias_T[axis] = component
            self._config = self._config.replace(bias_T=bias_T)

    # Initial cross-axis matrix

    def initial_matrix(self) -> NDArray[np.float64]:
        """Return a copy of the initial guess of Mm."""
        return np.array(self._config.initial_matrix, dtype=np.float64)

    def initial_entry(self, name: str) -> float:
        """Return one entry of the initial guess by parameter name."""
        row, col = self._position(name)
        return float(self._config.initial_matrix[row, col])

    def set_initial_matrix(self, initial_matrix: Any) -> None:
        """Set the full 3x3 initial guess of Mm."""
        self._update(initial_matrix=initial_matrix)

    def set_initial_entry(self, name: str, value: float) -> None:
        """Set one entry of the initial guess by parameter name."""
        self._set_initial_entries({name: value})

    def set_initial_scaling_factors(self, sx: float, sy: float, sz: float) -> None:
        """Set the diagonal of the initial guess."""
        self._set_initial_entries(
            {PARAM_NAME_SX: sx, PARAM_NAME_SY: sy, PARAM_NAME_SZ: sz}
        )

    def set_initial_cross_coupling_errors(
        self,
        mxy: float,
        mxz: float,
        myx: float,
        myz: float,
        mzx: float,
        mzy: float,
    ) -> None:
        """Set the off-diagonal entries of the initial guess."""
        self._set_initial_entries(
            {
                PARAM_NAME_MXY: mxy,
                PARAM_NAME_MXZ: mxz,
                PARAM_NAME_MYX: myx,
                PARAM_NAME_MYZ: myz,
                PARAM_NAME_MZX: mzx,
                PARAM_NAME_MZY: mzy,
            }
        )

    def set_initial_scaling_factors_and_cross_coupling_errors(
        self,
        sx: float,
        sy: float,
        sz: float,
        mxy: float,
        mxz: float,
        myx: float,
        myz: float,
        mzx: float,
        mzy: float,
    ) -> None:
        """Set every entry of the initial guess."""
        self._set_initial_entries(
            {
                PARAM_NAME_SX: sx,
                PARAM_NAME_SY: sy,
                PARAM_NAME_SZ: sz,
                PARAM_NAME_MXY: mxy,
                PARAM_NAME_MXZ: mxz,
                PARAM_NAME_MYX: myx,
                PARAM_NAME_MYZ: myz,
                PARAM_NAME_MZX: mzx,
                PARAM_NAME_MZY: mzy,
            }
        )

    def _set_initial_entries(self, values: dict[str, float]) -> None:
        positions: list[tuple[int, int]] = [self._position(name) for name in values]
        entries: list[float] = self._coordinates(tuple(values.values()), "initial")
        with self._lock:
            if self._running:
                raise LockedError("calibrator is running")
            matrix: NDArray[np.float64] = np.array(
                self._config.initial_matrix,
                dtype=np.float64,
            )
            for (row, col), value in zip(positions, entries):
                matrix[row, col] = value
            self._config = self._config.replace(initial_matrix=matrix)

    @staticmethod
    def _position(name: str) -> tuple[int, int]:
        try:
            return _ENTRY_POSITIONS[name]
        except KeyError as exc:
            raise CalibratorConfigError(f"unknown matrix entry: {name}") from exc

    @staticmethod
    def _coordinates(values: tuple[float, ...], name: str) -> list[float]:
        try:
            return [as_finite_float(value, name) for value in values]
        except ValueError as exc:
            raise CalibratorConfigError(str(exc)) from exc

    ############################################################################
    # Calibration
    ############################################################################

    def calibrate(self) -> EstimationResult:
        """Estimate the cross-axis matrix from the configured measurements.

        Returns:
            The committed estimation result

        Raises:
            LockedError: If a calibration is already running
            NotReadyError: If the calibrator is not ready
            CalibrationError: If the numerical fit fails. The previous result
                is kept and on_calibrate_end is not called.
        """
        with self._lock:
            if self._running:
                raise LockedError("calibrator is already running")
            if not self._config.is_ready():
                raise NotReadyError("calibrator is not ready")
            self._running = True
            config: CalibratorConfig = self._config

        try:
            _LOG.debug(
                "Calibrating %d measurements (common_axis=%s)",
                len(config.measurements or ()),
                config.common_axis,
            )

            if config.listener is not None:
                config.listener.on_calibrate_start(self)

            try:
                result: EstimationResult = self._solve(config)
            except CalibrationError as exc:
                _LOG.warning("Magnetometer calibration failed: %s", exc)
                raise

            with self._lock:
                self._result = result

            _LOG.info(
                "Magnetometer calibration converged after %d iterations (%s): "
                "chi2=%.6e mse=%.6e",
                result.iterations,
                result.termination,
                result.chi_square,
                result.mse,
            )

            if config.listener is not None:
                config.listener.on_calibrate_end(self)

            return result
        finally:
            with self._lock:
                self._running = False

    @staticmethod
    def _solve(config: CalibratorConfig) -> EstimationResult:
        if config.bias_T is None or config.reference_norm is None:
            raise NotReadyError("calibrator is not ready")

        # The collection is shared with the caller and may have changed
        measurements: list[Measurement] = list(config.measurements or ())
        if not all(isinstance(m, Measurement) for m in measurements):
            raise CalibrationError("measurements must be Measurement")

        try:
            norms_T: NDArray[np.float64] = reference_norms(
                config.reference_norm,
                measurements,
            )
        except (ReferenceFieldError, ValueError, TypeError) as exc:
            raise CalibrationError(f"reference field unavailable: {exc}") from exc

        model: MagnitudeResidualModel = MagnitudeResidualModel(
            raw_T=np.asarray([m.raw_T for m in measurements], dtype=np.float64),
            bias_T=config.bias_T,
            reference_norms_T=norms_T,
            stddevs_T=np.asarray([m.stddev_T for m in measurements], dtype=np.float64),
        )

        layout: ParameterLayout = config.layout()
        params0: NDArray[np.float64] = layout.pack(config.initial_sensor_matrix())
        rank_rtol: float = config.params.solver.rank_rtol

        try:
            report: SolverReport = optimize(
                model,
                params0,
                layout,
                config.params.solver,
            )
            stats: FitStatistics = compute_statistics(
                report.linearization,
                model.weights(),
                layout,
                rank_rtol,
            )
            stats.covariance.assert_psd()
        except (OptimizerError, StatisticsError, CovarianceError) as exc:
            raise CalibrationError(str(exc)) from exc

        matrix: NDArray[np.float64] = layout.unpack(report.params) - np.eye(
            TRIAD_COMPONENTS, dtype=np.float64
        )

        return EstimationResult(
            matrix=matrix,
            covariance=stats.covariance,
            chi_square=stats.chi_square,
            mse=stats.mse,
            iterations=report.iterations,
            initial_cost=report.initial_cost,
            final_cost=report.final_cost,
            termination=report.termination,
        )

    ############################################################################
    # Results
    ############################################################################

    def result(self) -> EstimationResult | None:
        """Return the last successful estimation result, or None."""
        with self._lock:
            return self._result

    def estimated_matrix(self) -> NDArray[np.float64] | None:
        """Return a copy of the estimated Mm, or None."""
        result: EstimationResult | None = self.result()
        if result is None:
            return None
        return np.array(result.matrix, dtype=np.float64)

    def estimated_covariance(self) -> NDArray[np.float64] | None:
        """Return a copy of the 9x9 estimated covariance, or None."""
        result: EstimationResult | None = self.result()
        if result is None:
            return None
        return result.covariance_array()

    def estimated_chi_sq(self) -> float | None:
        result: EstimationResult | None = self.result()
        return None if result is None else result.chi_square

    def estimated_mse(self) -> float | None:
        result: EstimationResult | None = self.result()
        return None if result is None else result.mse

    def estimated_entry(self, name: str) -> float | None:
        """Return one estimated entry of Mm by parameter name, or None."""
        row, col = self._position(name)
        result: EstimationResult | None = self.result()
        if result is None:
            return None
        return float(result.matrix[row, col])

    def estimated_sx(self) -> float | None:
        return self.estimated_entry(PARAM_NAME_SX)

    def estimated_sy(self) -> float | None:
        return self.estimated_entry(PARAM_NAME_SY)

    def estimated_sz(self) -> float | None:
        return self.estimated_entry(PARAM_NAME_SZ)

    def estimated_mxy(self) -> float | None:
        return self.estimated_entry(PARAM_NAME_MXY)

    def estimated_mxz(self) -> float | None:
        return self.estimated_entry(PARAM_NAME_MXZ)

    def estimated_myx(self) -> float | None:
        return self.estimated_entry(PARAM_NAME_MYX)

    def estimated_myz(self) -> float | None:
        return self.estimated_entry(PARAM_NAME_MYZ)

    def estimated_mzx(self) -> float | None:
        return self.estimated_entry(PARAM_NAME_MZX)

    def estimated_mzy(self) -> float | None:
        return self.estimated_entry(PARAM_NAME_MZY)
