################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Reference magnetic field norms used as ground truth during calibration.

A calibration run needs the magnitude of the true field at every measurement.
It is either a single known norm shared by all measurements, or it is looked
up per measurement from an Earth field model evaluated at the measurement's
position and instant.
"""

from __future__ import annotations

from typing import Iterable
from typing import Protocol
from typing import runtime_checkable

import numpy as np

from oasis_magcal.calibration.calibration_types.measurement import Measurement
from oasis_magcal.calibration.math_utils.validation import as_positive_float
from oasis_magcal.calibration.math_utils.validation import as_vector3


class ReferenceFieldError(Exception):
    """Raised when a reference field norm cannot be determined."""


class ReferenceFieldProvider(Protocol):
    """Earth magnetic field model evaluated at a position and instant."""

    def estimate(self, position: np.ndarray, decimal_year: float) -> np.ndarray:
        """Return the reference flux density vector in tesla."""
        ...


@runtime_checkable
class ReferenceNormSource(Protocol):
    """Per-measurement source of reference field norms."""

    def norm_T(self, measurement: Measurement) -> float:
        """Return the reference norm in tesla for a measurement."""
        ...


class ConstantReferenceNorm:
    """Reference norm shared by every measurement."""

    def __init__(self, norm_T: float) -> None:
        try:
            self._norm_T: float = as_positive_float(norm_T, "reference norm")
        except ValueError as exc:
            raise ReferenceFieldError(str(exc)) from exc

    @property
    def value_T(self) -> float:
        return self._norm_T

    def norm_T(self, measurement: Measurement) -> float:
        return self._norm_T

    def __repr__(self) -> str:
        return f"ConstantReferenceNorm({self._norm_T!r})"


class ReferenceFieldNorm:
    """Reference norm from a field model at each measurement's position."""

    def __init__(self, provider: ReferenceFieldProvider) -> None:
        if not callable(getattr(provider, "estimate", None)):
            raise ReferenceFieldError("provider must implement estimate()")
        self._provider: ReferenceFieldProvider = provider

    @property
    def provider(self) -> ReferenceFieldProvider:
        return self._provider

    def norm_T(self, measurement: Measurement) -> float:
        if measurement.position is None or measurement.decimal_year is None:
            raise ReferenceFieldError(
                "measurement needs position and decimal_year for a field model"
            )
        try:
            field_T: np.ndarray = as_vector3(
                self._provider.estimate(
                    measurement.position,
                    measurement.decimal_year,
                ),
                "reference field",
            )
            return as_positive_float(
                float(np.linalg.norm(field_T)),
                "reference norm",
            )
        except ValueError as exc:
            raise ReferenceFieldError(str(exc)) from exc


def reference_norms(
    source: ReferenceNormSource,
    measurements: Iterable[Measurement],
) -> np.ndarray:
    """Return the reference norm of every measurement in iteration order."""
    norms: list[float] = [float(source.norm_T(m)) for m in measurements]
    result: np.ndarray = np.asarray(norms, dtype=np.float64)
    if not np.all(np.isfinite(result)) or np.any(result <= 0.0):
        raise ReferenceFieldError("reference norms must be finite and positive")
    return result
