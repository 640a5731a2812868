################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Validation helpers for magnetometer calibration inputs."""

from __future__ import annotations

from typing import Any

import numpy as np


# Number of components of a body magnetic flux density triad
TRIAD_COMPONENTS: int = 3


def as_vector3(value: Any, name: str) -> np.ndarray:
    """Return a finite float64 copy with shape (3,).

    Accepts flat 3-sequences as well as (3, 1) and (1, 3) matrices.
    """
    array: np.ndarray = np.array(value, dtype=np.float64)
    if array.shape not in {(3,), (3, 1), (1, 3)}:
        raise ValueError(f"{name} must have 3 elements, got shape {array.shape}")
    vector: np.ndarray = array.reshape(TRIAD_COMPONENTS)
    if not np.all(np.isfinite(vector)):
        raise ValueError(f"{name} must contain finite values")

    return vector


def as_matrix3(value: Any, name: str) -> np.ndarray:
    """Return a finite float64 copy with shape (3, 3)."""
    array: np.ndarray = np.array(value, dtype=np.float64)
    if array.shape != (TRIAD_COMPONENTS, TRIAD_COMPONENTS):
        raise ValueError(f"{name} must have shape (3, 3), got shape {array.shape}")
    if not np.all(np.isfinite(array)):
        raise ValueError(f"{name} must contain finite values")

    return array


def as_finite_float(value: Any, name: str) -> float:
    """Return a finite float, rejecting booleans."""
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number")
    try:
        result: float = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number") from exc
    if not np.isfinite(result):
        raise ValueError(f"{name} must be finite")

    return result


def as_positive_float(value: Any, name: str) -> float:
    """Return a finite, strictly positive float."""
    result: float = as_finite_float(value, name)
    if result <= 0.0:
        raise ValueError(f"{name} must be positive")

    return result
