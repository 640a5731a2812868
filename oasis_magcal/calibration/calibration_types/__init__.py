################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Type definitions for magnetometer calibration."""

from __future__ import annotations

from oasis_magcal.calibration.calibration_types.estimation_result import (
    EstimationResult,
)
from oasis_magcal.calibration.calibration_types.measurement import Measurement
from oasis_magcal.calibration.calibration_types.measurement import MeasurementType


__all__ = [
    "EstimationResult",
    "Measurement",
    "MeasurementType",
]
