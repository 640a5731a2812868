################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Tests for the known hard-iron magnetometer calibrator."""

from __future__ import annotations

import dataclasses
import itertools
from typing import Callable

import numpy as np
import pytest
from numpy.typing import NDArray

from oasis_magcal.calibration.calibration_types.estimation_result import (
    EstimationResult,
)
from oasis_magcal.calibration.calibration_types.measurement import Measurement
from oasis_magcal.calibration.calibration_types.measurement import MeasurementType
from oasis_magcal.calibration.calibrator.calibrator_state import CalibrationError
from oasis_magcal.calibration.calibrator.calibrator_state import CalibratorState
from oasis_magcal.calibration.calibrator.calibrator_state import LockedError
from oasis_magcal.calibration.calibrator.calibrator_state import NotReadyError
from oasis_magcal.calibration.calibrator.known_hard_iron_calibrator import (
    KnownHardIronCalibrator,
)
from oasis_magcal.calibration.config.calibration_params import JACOBIAN_NUMERIC
from oasis_magcal.calibration.config.calibration_params import CalibrationParams
from oasis_magcal.calibration.config.calibrator_config import CalibratorConfigError
from oasis_magcal.calibration.reference.reference_field import ReferenceFieldNorm


# Units: T. Meaning: true Earth field norm for synthetic data
_FIELD_NORM_T: float = 50e-6

# Units: T. Meaning: noise standard deviation for noisy scenarios
_STDDEV_T: float = 200e-9

# Units: T. Meaning: known hard-iron bias
_BIAS_T: NDArray[np.float64] = np.array([3e-6, -1.5e-6, 0.8e-6], dtype=np.float64)

# Units: unitless. Meaning: general cross-axis matrix
_MM_GENERAL: NDArray[np.float64] = np.array(
    [[0.02, 0.008, -0.006], [0.004, -0.012, 0.009], [-0.007, 0.005, 0.015]],
    dtype=np.float64,
)

# Units: unitless. Meaning: cross-axis matrix with a common axis
_MM_COMMON_AXIS: NDArray[np.float64] = np.array(
    [[-0.018, 0.009, -0.004], [0.0, 0.012, 0.007], [0.0, 0.0, 0.021]],
    dtype=np.float64,
)


def _measurements(
    seed: int,
    count: int,
    Mm: NDArray[np.float64],
    noise_T: float = 0.0,
    norms_T: NDArray[np.float64] | None = None,
) -> list[Measurement]:
    rng: np.random.Generator = np.random.default_rng(seed)
    directions: NDArray[np.float64] = rng.normal(size=(count, 3))
    directions /= np.linalg.norm(directions, axis=1)[:, None]
    if norms_T is None:
        norms_T = np.full(count, _FIELD_NORM_T)
    b_true: NDArray[np.float64] = directions * norms_T[:, None]
    M: NDArray[np.float64] = np.eye(3) + Mm
    raw: NDArray[np.float64] = _BIAS_T + b_true @ M.T
    raw += noise_T * rng.normal(size=raw.shape)
    stddev_T: float = noise_T if noise_T > 0.0 else _STDDEV_T
    return [Measurement(raw_T=row, stddev_T=stddev_T) for row in raw]


def _calibrator(
    measurements: list[Measurement],
    common_axis: bool = False,
    **kwargs: object,
) -> KnownHardIronCalibrator:
    return KnownHardIronCalibrator(
        measurements=measurements,
        bias_T=_BIAS_T,
        common_axis=common_axis,
        reference_norm=_FIELD_NORM_T,
        **kwargs,  # type: ignore[arg-type]
    )


class _RecordingListener:
    def __init__(self) -> None:
        self.events: list[str] = []
        self.states: list[CalibratorState] = []

    def on_calibrate_start(self, calibrator: KnownHardIronCalibrator) -> None:
        self.events.append("start")
        self.states.append(calibrator.state())

    def on_calibrate_end(self, calibrator: KnownHardIronCalibrator) -> None:
        self.events.append("end")
        self.states.append(calibrator.state())


def test_initial_state() -> None:
    """A fresh calibrator is not ready and has no results."""
    calibrator: KnownHardIronCalibrator = KnownHardIronCalibrator()

    assert calibrator.state() == CalibratorState.NOT_READY
    assert not calibrator.is_ready()
    assert not calibrator.is_running()
    assert calibrator.minimum_required_measurements() == 10
    assert calibrator.bias_T() is None
    assert calibrator.bias_x() is None
    assert calibrator.result() is None
    assert calibrator.estimated_matrix() is None
    assert calibrator.estimated_covariance() is None
    assert calibrator.estimated_chi_sq() is None
    assert calibrator.estimated_mse() is None
    assert calibrator.estimated_sx() is None
    np.testing.assert_array_equal(calibrator.initial_matrix(), np.zeros((3, 3)))
    assert (
        calibrator.measurement_type()
        == MeasurementType.STANDARD_DEVIATION_BODY_MAGNETIC_FLUX_DENSITY
    )
    assert not calibrator.is_ordered_measurements_required()
    assert not calibrator.is_quality_scores_required()


def test_not_ready_raises() -> None:
    """calibrate() before the inputs are complete should raise."""
    calibrator: KnownHardIronCalibrator = KnownHardIronCalibrator(
        measurements=_measurements(0, 20, _MM_GENERAL),
        bias_T=_BIAS_T,
    )
    with pytest.raises(NotReadyError):
        calibrator.calibrate()
    assert calibrator.result() is None


def test_readiness_is_independent_of_assignment_order() -> None:
    """Every ordering of the three required inputs should end READY."""
    measurements: list[Measurement] = _measurements(1, 10, _MM_GENERAL)
    setters: list[Callable[[KnownHardIronCalibrator], None]] = [
        lambda c: c.set_measurements(measurements),
        lambda c: c.set_bias(_BIAS_T),
        lambda c: c.set_reference_norm(_FIELD_NORM_T),
    ]
    for order in itertools.permutations(setters):
        calibrator: KnownHardIronCalibrator = KnownHardIronCalibrator()
        for setter in order:
            assert not calibrator.is_ready()
            setter(calibrator)
        assert calibrator.is_ready()
        assert calibrator.state() == CalibratorState.READY


def test_minimum_measurements_depend_on_mode() -> None:
    """Nine measurements suffice only under the common-axis assumption."""
    calibrator: KnownHardIronCalibrator = _calibrator(
        _measurements(2, 9, _MM_COMMON_AXIS)
    )
    assert not calibrator.is_ready()
    calibrator.set_common_axis(True)
    assert calibrator.common_axis()
    assert calibrator.minimum_required_measurements() == 7
    assert calibrator.is_ready()


def test_bias_setters_round_trip() -> None:
    """Bias should round-trip through every setter form."""
    calibrator: KnownHardIronCalibrator = KnownHardIronCalibrator()

    calibrator.set_bias_coordinates(1e-6, 2e-6, 3e-6)
    np.testing.assert_array_equal(calibrator.bias_T(), [1e-6, 2e-6, 3e-6])

    calibrator.set_bias(np.array([[4e-6], [5e-6], [6e-6]]))
    assert calibrator.bias_x() == 4e-6
    assert calibrator.bias_y() == 5e-6
    assert calibrator.bias_z() == 6e-6
    bias_matrix: NDArray[np.float64] | None = calibrator.bias_matrix()
    assert bias_matrix is not None
    assert bias_matrix.shape == (3, 1)
    np.testing.assert_array_equal(bias_matrix[:, 0], [4e-6, 5e-6, 6e-6])

    calibrator.set_bias_x(7e-6)
    calibrator.set_bias_y(8e-6)
    calibrator.set_bias_z(9e-6)
    np.testing.assert_array_equal(calibrator.bias_T(), [7e-6, 8e-6, 9e-6])

    # Returned buffers are copies
    bias_T: NDArray[np.float64] | None = calibrator.bias_T()
    assert bias_T is not None
    bias_T[0] = 1.0
    assert calibrator.bias_x() == 7e-6


def test_single_axis_bias_setter_starts_from_zero() -> None:
    """Setting one component of an unset bias zeroes the others."""
    calibrator: KnownHardIronCalibrator = KnownHardIronCalibrator()
    calibrator.set_bias_y(2e-6)
    np.testing.assert_array_equal(calibrator.bias_T(), [0.0, 2e-6, 0.0])


def test_initial_matrix_setters() -> None:
    """Per-entry and grouped setters should write the expected entries."""
    calibrator: KnownHardIronCalibrator = KnownHardIronCalibrator()

    calibrator.set_initial_scaling_factors(0.1, 0.2, 0.3)
    np.testing.assert_array_equal(
        calibrator.initial_matrix(),
        np.diag([0.1, 0.2, 0.3]),
    )

    calibrator.set_initial_cross_coupling_errors(1.0, 2.0, 3.0, 4.0, 5.0, 6.0)
    np.testing.assert_array_equal(
        calibrator.initial_matrix(),
        [[0.1, 1.0, 2.0], [3.0, 0.2, 4.0], [5.0, 6.0, 0.3]],
    )

    calibrator.set_initial_scaling_factors_and_cross_coupling_errors(
        1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0
    )
    np.testing.assert_array_equal(
        calibrator.initial_matrix(),
        [[1.0, 4.0, 5.0], [6.0, 2.0, 7.0], [8.0, 9.0, 3.0]],
    )

    calibrator.set_initial_entry("mzy", -1.0)
    assert calibrator.initial_entry("mzy") == -1.0
    assert calibrator.initial_entry("sx") == 1.0

    with pytest.raises(CalibratorConfigError):
        calibrator.set_initial_entry("mxx", 0.0)


def test_invalid_setters_leave_state_unchanged() -> None:
    """Rejected values must not modify the configuration."""
    calibrator: KnownHardIronCalibrator = _calibrator(
        _measurements(3, 10, _MM_GENERAL)
    )
    initial: NDArray[np.float64] = np.full((3, 3), 0.01)
    calibrator.set_initial_matrix(initial)

    with pytest.raises(CalibratorConfigError):
        calibrator.set_bias([1e-6, 2e-6])
    with pytest.raises(CalibratorConfigError):
        calibrator.set_bias_x(float("nan"))
    with pytest.raises(CalibratorConfigError):
        calibrator.set_initial_matrix(np.zeros((2, 3)))
    with pytest.raises(CalibratorConfigError):
        calibrator.set_initial_scaling_factors(0.1, float("inf"), 0.0)
    with pytest.raises(CalibratorConfigError):
        calibrator.set_reference_norm(0.0)
    with pytest.raises(CalibratorConfigError):
        calibrator.set_reference_norm(-_FIELD_NORM_T)

    np.testing.assert_array_equal(calibrator.bias_T(), _BIAS_T)
    np.testing.assert_array_equal(calibrator.initial_matrix(), initial)
    assert calibrator.is_ready()


def test_constructor_rejects_invalid_arguments() -> None:
    """Invalid constructor arguments should raise CalibratorConfigError."""
    with pytest.raises(CalibratorConfigError):
        KnownHardIronCalibrator(bias_T=[1.0, 2.0, 3.0, 4.0])
    with pytest.raises(CalibratorConfigError):
        KnownHardIronCalibrator(reference_norm=0.0)
    with pytest.raises(CalibratorConfigError):
        KnownHardIronCalibrator(initial_matrix=np.eye(2))


def test_general_noise_free_from_true_matrix() -> None:
    """Starting at the true matrix, a noise-free fit stays there."""
    listener: _RecordingListener = _RecordingListener()
    calibrator: KnownHardIronCalibrator = _calibrator(
        _measurements(4, 50, _MM_GENERAL),
        initial_matrix=_MM_GENERAL,
        listener=listener,
    )

    result: EstimationResult = calibrator.calibrate()

    np.testing.assert_allclose(result.matrix, _MM_GENERAL, atol=1e-9)
    assert calibrator.result() is result
    assert calibrator.state() == CalibratorState.READY
    assert listener.events == ["start", "end"]
    assert listener.states == [CalibratorState.RUNNING, CalibratorState.RUNNING]

    covariance: NDArray[np.float64] | None = calibrator.estimated_covariance()
    assert covariance is not None
    assert covariance.shape == (9, 9)
    np.testing.assert_allclose(covariance, covariance.T, atol=0.0)
    assert result.chi_square >= 0.0
    assert result.mse >= 0.0


def test_common_axis_noise_free_from_identity() -> None:
    """A common-axis sensor is recovered exactly from the identity guess."""
    calibrator: KnownHardIronCalibrator = _calibrator(
        _measurements(5, 30, _MM_COMMON_AXIS),
        common_axis=True,
    )

    calibrator.calibrate()

    estimated: NDArray[np.float64] | None = calibrator.estimated_matrix()
    assert estimated is not None
    np.testing.assert_allclose(estimated, _MM_COMMON_AXIS, atol=1e-9)
    assert calibrator.estimated_sx() == pytest.approx(-0.018, abs=1e-9)
    assert calibrator.estimated_sy() == pytest.approx(0.012, abs=1e-9)
    assert calibrator.estimated_sz() == pytest.approx(0.021, abs=1e-9)
    assert calibrator.estimated_mxy() == pytest.approx(0.009, abs=1e-9)
    assert calibrator.estimated_mxz() == pytest.approx(-0.004, abs=1e-9)
    assert calibrator.estimated_myz() == pytest.approx(0.007, abs=1e-9)
    assert calibrator.estimated_myx() == 0.0
    assert calibrator.estimated_mzx() == 0.0
    assert calibrator.estimated_mzy() == 0.0


def test_general_minimum_measurements_noise_free() -> None:
    """Exactly the minimum number of general-case samples recovers Mm."""
    calibrator: KnownHardIronCalibrator = _calibrator(
        _measurements(17, 10, _MM_GENERAL),
        initial_matrix=_MM_GENERAL,
    )
    assert calibrator.minimum_required_measurements() == 10
    assert calibrator.is_ready()

    result: EstimationResult = calibrator.calibrate()

    np.testing.assert_allclose(result.matrix, _MM_GENERAL, atol=1e-9)
    assert result.chi_square > 0.0
    assert result.mse > 0.0
    assert np.all(np.diag(result.covariance_array()) > 0.0)


def test_common_axis_minimum_measurements_noise_free() -> None:
    """Exactly the minimum number of common-axis samples recovers Mm."""
    calibrator: KnownHardIronCalibrator = _calibrator(
        _measurements(18, 7, _MM_COMMON_AXIS),
        common_axis=True,
    )
    assert calibrator.minimum_required_measurements() == 7
    assert calibrator.is_ready()

    result: EstimationResult = calibrator.calibrate()

    np.testing.assert_allclose(result.matrix, _MM_COMMON_AXIS, atol=1e-9)
    assert result.chi_square > 0.0
    assert result.mse > 0.0


def test_general_noisy_fit() -> None:
    """Noisy data should give an accurate estimate with positive statistics."""
    calibrator: KnownHardIronCalibrator = _calibrator(
        _measurements(6, 2000, _MM_GENERAL, noise_T=_STDDEV_T),
        initial_matrix=_MM_GENERAL,
    )

    result: EstimationResult = calibrator.calibrate()

    np.testing.assert_allclose(result.matrix, _MM_GENERAL, atol=5e-3)
    assert result.chi_square > 0.0
    assert result.mse > 0.0
    assert calibrator.estimated_chi_sq() == result.chi_square
    assert calibrator.estimated_mse() == result.mse
    covariance: NDArray[np.float64] = result.covariance_array()
    assert np.all(np.diag(covariance) > 0.0)
    assert result.covariance.is_psd()


def test_common_axis_noisy_fit() -> None:
    """Fixed entries should have exactly zero covariance."""
    calibrator: KnownHardIronCalibrator = _calibrator(
        _measurements(7, 2000, _MM_COMMON_AXIS, noise_T=_STDDEV_T),
        common_axis=True,
    )

    result: EstimationResult = calibrator.calibrate()

    np.testing.assert_allclose(result.matrix, _MM_COMMON_AXIS, atol=5e-3)
    assert result.chi_square > 0.0
    assert result.mse > 0.0
    covariance: NDArray[np.float64] = result.covariance_array()
    for fixed in (5, 7, 8):
        assert np.all(covariance[fixed, :] == 0.0)
        assert np.all(covariance[:, fixed] == 0.0)
    assert np.all(np.diag(covariance)[[0, 1, 2, 3, 4, 6]] > 0.0)
    assert np.all(result.standard_deviations() >= 0.0)


def test_numeric_jacobian_matches_analytic_fit() -> None:
    """The Jacobian method should not change the estimate."""
    measurements: list[Measurement] = _measurements(
        8, 300, _MM_COMMON_AXIS, noise_T=_STDDEV_T
    )
    analytic: KnownHardIronCalibrator = _calibrator(measurements, common_axis=True)
    defaults: CalibrationParams = CalibrationParams.defaults()
    numeric: KnownHardIronCalibrator = _calibrator(
        measurements,
        common_axis=True,
        params=defaults.replace(
            solver=dataclasses.replace(defaults.solver, jacobian=JACOBIAN_NUMERIC)
        ),
    )

    np.testing.assert_allclose(
        numeric.calibrate().matrix,
        analytic.calibrate().matrix,
        atol=1e-7,
    )


def test_mutation_while_running_is_locked() -> None:
    """Every mutator and calibrate() should raise while RUNNING."""
    errors: list[str] = []

    class _MutatingListener:
        def on_calibrate_start(self, calibrator: KnownHardIronCalibrator) -> None:
            assert calibrator.is_running()
            assert calibrator.state() == CalibratorState.RUNNING
            mutators: list[Callable[[], object]] = [
                calibrator.calibrate,
                lambda: calibrator.set_measurements([]),
                lambda: calibrator.set_bias(np.zeros(3)),
                lambda: calibrator.set_bias_x(0.0),
                lambda: calibrator.set_common_axis(True),
                lambda: calibrator.set_initial_matrix(np.eye(3)),
                lambda: calibrator.set_initial_entry("sx", 0.5),
                lambda: calibrator.set_reference_norm(1e-5),
                lambda: calibrator.set_listener(None),
            ]
            for mutator in mutators:
                with pytest.raises(LockedError):
                    mutator()
                errors.append("locked")

        def on_calibrate_end(self, calibrator: KnownHardIronCalibrator) -> None:
            pass

    calibrator: KnownHardIronCalibrator = _calibrator(
        _measurements(9, 30, _MM_COMMON_AXIS),
        common_axis=True,
        listener=_MutatingListener(),
    )
    calibrator.calibrate()

    assert len(errors) == 9
    assert calibrator.common_axis()
    np.testing.assert_array_equal(calibrator.bias_T(), _BIAS_T)
    np.testing.assert_array_equal(calibrator.initial_matrix(), np.zeros((3, 3)))
    assert calibrator.state() == CalibratorState.READY


def test_failed_fit_keeps_previous_result() -> None:
    """A numerical failure keeps the last result and skips on_calibrate_end."""
    listener: _RecordingListener = _RecordingListener()
    calibrator: KnownHardIronCalibrator = _calibrator(
        _measurements(10, 30, _MM_COMMON_AXIS),
        common_axis=True,
        listener=listener,
    )
    first: EstimationResult = calibrator.calibrate()

    degenerate: list[Measurement] = [
        Measurement(raw_T=[3e-5, 2e-5, 1e-5], stddev_T=_STDDEV_T)
    ] * 12
    calibrator.set_measurements(degenerate)
    with pytest.raises(CalibrationError):
        calibrator.calibrate()

    assert calibrator.result() is first
    assert calibrator.state() == CalibratorState.READY
    assert not calibrator.is_running()
    assert listener.events == ["start", "end", "start"]


def test_singular_initial_matrix_fails() -> None:
    """An initial guess with singular I + Mm is a calibration failure."""
    calibrator: KnownHardIronCalibrator = _calibrator(
        _measurements(11, 20, _MM_GENERAL),
        initial_matrix=-np.eye(3),
    )
    with pytest.raises(CalibrationError):
        calibrator.calibrate()
    assert calibrator.result() is None
    assert calibrator.state() == CalibratorState.READY


def test_results_replaced_on_each_success() -> None:
    """A later successful run replaces the whole result."""
    calibrator: KnownHardIronCalibrator = _calibrator(
        _measurements(12, 30, _MM_COMMON_AXIS),
        common_axis=True,
    )
    first: EstimationResult = calibrator.calibrate()
    calibrator.set_measurements(_measurements(13, 40, np.zeros((3, 3))))
    second: EstimationResult = calibrator.calibrate()

    assert calibrator.result() is second
    assert second is not first
    np.testing.assert_allclose(second.matrix, np.zeros((3, 3)), atol=1e-9)


class _AltitudeFieldModel:
    def estimate(self, position: np.ndarray, decimal_year: float) -> np.ndarray:
        strength_T: float = 45e-6 + 1e-9 * float(position[2])
        return np.array([0.0, strength_T, 0.0], dtype=np.float64)


def test_reference_field_model_per_measurement() -> None:
    """Per-measurement norms from a field model should be honored."""
    rng: np.random.Generator = np.random.default_rng(14)
    altitudes_m: NDArray[np.float64] = rng.uniform(0.0, 5000.0, size=40)
    norms_T: NDArray[np.float64] = 45e-6 + 1e-9 * altitudes_m
    base: list[Measurement] = _measurements(15, 40, _MM_COMMON_AXIS, norms_T=norms_T)
    measurements: list[Measurement] = [
        Measurement(
            raw_T=m.raw_T,
            stddev_T=m.stddev_T,
            position=[0.0, 0.0, altitude_m],
            decimal_year=2026.0,
        )
        for m, altitude_m in zip(base, altitudes_m)
    ]

    calibrator: KnownHardIronCalibrator = KnownHardIronCalibrator(
        measurements=measurements,
        bias_T=_BIAS_T,
        common_axis=True,
        reference_norm=ReferenceFieldNorm(_AltitudeFieldModel()),
    )
    result: EstimationResult = calibrator.calibrate()

    np.testing.assert_allclose(result.matrix, _MM_COMMON_AXIS, atol=1e-9)


def test_reference_field_failure_is_calibration_error() -> None:
    """Measurements without a position cannot use a field model."""
    calibrator: KnownHardIronCalibrator = KnownHardIronCalibrator(
        measurements=_measurements(16, 20, _MM_GENERAL),
        bias_T=_BIAS_T,
        reference_norm=ReferenceFieldNorm(_AltitudeFieldModel()),
    )
    with pytest.raises(CalibrationError):
        calibrator.calibrate()
    assert calibrator.state() == CalibratorState.READY


class _FailingNormSource:
    def norm_T(self, measurement: Measurement) -> float:
        raise ValueError("field model out of range")


def test_norm_source_value_error_is_calibration_error() -> None:
    """Errors raised by a custom norm source should surface as CalibrationError."""
    listener: _RecordingListener = _RecordingListener()
    calibrator: KnownHardIronCalibrator = KnownHardIronCalibrator(
        measurements=_measurements(19, 20, _MM_GENERAL),
        bias_T=_BIAS_T,
        reference_norm=_FailingNormSource(),
        listener=listener,
    )
    with pytest.raises(CalibrationError):
        calibrator.calibrate()
    assert calibrator.result() is None
    assert calibrator.state() == CalibratorState.READY
    assert listener.events == ["start"]


def test_shared_measurements_modified_after_set() -> None:
    """Foreign objects added to the shared collection fail the calibration."""
    measurements: list[Measurement] = _measurements(20, 20, _MM_GENERAL)
    calibrator: KnownHardIronCalibrator = _calibrator(measurements)
    measurements.append(object())  # type: ignore[arg-type]

    with pytest.raises(CalibrationError):
        calibrator.calibrate()
    assert calibrator.result() is None
    assert calibrator.state() == CalibratorState.READY
