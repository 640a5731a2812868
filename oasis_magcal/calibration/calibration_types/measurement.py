################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Magnetometer measurement types for calibration."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from oasis_magcal.calibration.math_utils.validation import as_finite_float
from oasis_magcal.calibration.math_utils.validation import as_positive_float
from oasis_magcal.calibration.math_utils.validation import as_vector3


class MeasurementType(Enum):
    """Kind of measurement consumed by a calibrator."""

    STANDARD_DEVIATION_BODY_MAGNETIC_FLUX_DENSITY = "stddev_body_flux_density"


@dataclass(frozen=True)
class Measurement:
    """Raw body magnetic flux density sample with its noise level.

    Attributes:
        raw_T: Raw body-frame flux density in tesla, shape (3,)
        stddev_T: Measurement noise standard deviation in tesla
        quality_score: Optional quality score, larger is better
        position: Optional position forwarded to a reference field provider
        decimal_year: Optional instant forwarded to a reference field provider
    """

    raw_T: np.ndarray
    stddev_T: float
    quality_score: float | None = None
    position: np.ndarray | None = None
    decimal_year: float | None = None

    def __post_init__(self) -> None:
        """Validate measurement fields and coerce arrays."""
        object.__setattr__(self, "raw_T", as_vector3(self.raw_T, "raw_T"))
        object.__setattr__(
            self,
            "stddev_T",
            as_positive_float(self.stddev_T, "stddev_T"),
        )
        if self.quality_score is not None:
            object.__setattr__(
                self,
                "quality_score",
                as_finite_float(self.quality_score, "quality_score"),
            )
        if self.position is not None:
            object.__setattr__(
                self,
                "position",
                as_vector3(self.position, "position"),
            )
        if self.decimal_year is not None:
            object.__setattr__(
                self,
                "decimal_year",
                as_finite_float(self.decimal_year, "decimal_year"),
            )

    def weight(self) -> float:
        """Return the least-squares weight 1 / stddev^2."""
        return 1.0 / (self.stddev_T * self.stddev_T)

    def magnitude_T(self) -> float:
        """Return the magnitude of the raw flux density in tesla."""
        return float(np.linalg.norm(self.raw_T))
