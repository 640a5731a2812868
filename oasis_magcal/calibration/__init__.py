################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Known hard-iron magnetometer calibration."""

from __future__ import annotations

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
from oasis_magcal.calibration.calibrator.flux_density_fixer import (
    FluxDensityFixerError,
)
from oasis_magcal.calibration.calibrator.flux_density_fixer import (
    MagneticFluxDensityFixer,
)
from oasis_magcal.calibration.calibrator.known_hard_iron_calibrator import (
    KnownHardIronCalibrator,
)
from oasis_magcal.calibration.config.calibration_params import CalibrationParams
from oasis_magcal.calibration.config.calibration_params import SolverParams
from oasis_magcal.calibration.config.calibrator_config import CalibratorConfig
from oasis_magcal.calibration.config.calibrator_config import CalibratorConfigError
from oasis_magcal.calibration.reference.reference_field import ConstantReferenceNorm
from oasis_magcal.calibration.reference.reference_field import ReferenceFieldNorm
from oasis_magcal.calibration.reference.reference_field import (
    ReferenceFieldProvider,
)


__all__ = [
    "CalibrationError",
    "CalibrationParams",
    "CalibratorConfig",
    "CalibratorConfigError",
    "CalibratorListener",
    "CalibratorState",
    "ConstantReferenceNorm",
    "EstimationResult",
    "FluxDensityFixerError",
    "KnownHardIronCalibrator",
    "LockedError",
    "MagneticFluxDensityFixer",
    "Measurement",
    "MeasurementType",
    "NotReadyError",
    "ReferenceFieldNorm",
    "ReferenceFieldProvider",
    "SolverParams",
]
