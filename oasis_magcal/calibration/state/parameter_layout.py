################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Free-parameter layout for the cross-axis sensitivity matrix.

Parameters are ordered (sx, sy, sz, mxy, mxz, myx, myz, mzx, mzy), where

    Mm = [[sx,  mxy, mxz],
          [myx, sy,  myz],
          [mzx, mzy, sz ]]

The common-axis layout drops the sub-diagonal entries myx, mzx and mzy.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray


# Parameter name for the x-axis scale factor
PARAM_NAME_SX: str = "sx"

# Parameter name for the y-axis scale factor
PARAM_NAME_SY: str = "sy"

# Parameter name for the z-axis scale factor
PARAM_NAME_SZ: str = "sz"

# Parameter name for the x-y cross-coupling term
PARAM_NAME_MXY: str = "mxy"

# Parameter name for the x-z cross-coupling term
PARAM_NAME_MXZ: str = "mxz"

# Parameter name for the y-x cross-coupling term
PARAM_NAME_MYX: str = "myx"

# Parameter name for the y-z cross-coupling term
PARAM_NAME_MYZ: str = "myz"

# Parameter name for the z-x cross-coupling term
PARAM_NAME_MZX: str = "mzx"

# Parameter name for the z-y cross-coupling term
PARAM_NAME_MZY: str = "mzy"

# Matrix position of every parameter in canonical order
MATRIX_POSITIONS: tuple[tuple[str, int, int], ...] = (
    (PARAM_NAME_SX, 0, 0),
    (PARAM_NAME_SY, 1, 1),
    (PARAM_NAME_SZ, 2, 2),
    (PARAM_NAME_MXY, 0, 1),
    (PARAM_NAME_MXZ, 0, 2),
    (PARAM_NAME_MYX, 1, 0),
    (PARAM_NAME_MYZ, 1, 2),
    (PARAM_NAME_MZX, 2, 0),
    (PARAM_NAME_MZY, 2, 1),
)

# Total number of matrix parameters
GENERAL_UNKNOWNS: int = 9

# Number of free parameters under the common-axis assumption
COMMON_AXIS_UNKNOWNS: int = 6

# Parameters held at zero under the common-axis assumption
COMMON_AXIS_FIXED: frozenset[str] = frozenset(
    {PARAM_NAME_MYX, PARAM_NAME_MZX, PARAM_NAME_MZY}
)

# Dimension of the rotation group: ||M^-1 d|| is unchanged by M -> M Q
ROTATION_GAUGE_DIM: int = 3


class ParameterLayoutError(Exception):
    """Raised when a parameter layout or vector is invalid."""


@dataclass(frozen=True)
class ParameterEntry:
    """A single free parameter of the cross-axis matrix.

    Attributes:
        name: Parameter name
        index: Position in the free-parameter vector
        canonical_index: Position in the full 9-parameter order
        row: Matrix row
        col: Matrix column
    """

    name: str
    index: int
    canonical_index: int
    row: int
    col: int


@dataclass(frozen=True)
class ParameterLayout:
    """Deterministic mapping between a 3x3 matrix and its free parameters."""

    _entries: tuple[ParameterEntry, ...]
    common_axis: bool

    @classmethod
    def general(cls) -> ParameterLayout:
        """Return the 9-parameter layout."""
        return cls.for_mode(common_axis=False)

    @classmethod
    def for_mode(cls, *, common_axis: bool) -> ParameterLayout:
        """Construct the layout for the requested mode."""
        entries: list[ParameterEntry] = []
        for canonical_index, (name, row, col) in enumerate(MATRIX_POSITIONS):
            if common_axis and name in COMMON_AXIS_FIXED:
                continue
            entries.append(
                ParameterEntry(
                    name=name,
                    index=len(entries),
                    canonical_index=canonical_index,
                    row=row,
                    col=col,
                )
            )
        layout: ParameterLayout = cls(_entries=tuple(entries), common_axis=common_axis)
        layout.validate()
        return layout

    def dim(self) -> int:
        """Return the number of free parameters."""
        return len(self._entries)

    def identifiable_dim(self) -> int:
        """Return the rank the normal matrix must reach for a well-posed fit.

        Magnitude residuals cannot observe a rotation applied on the right of
        M, so the general layout has three unobservable directions.
        """
        if self.common_axis:
            return self.dim()
        return self.dim() - ROTATION_GAUGE_DIM

    def entries(self) -> tuple[ParameterEntry, ...]:
        """Return the entries in parameter order."""
        return self._entries

    def names(self) -> tuple[str, ...]:
        """Return the parameter names in parameter order."""
        return tuple(entry.name for entry in self._entries)

    def canonical_indices(self) -> NDArray[np.int64]:
        """Return the position of each free parameter in the 9-vector."""
        return np.asarray(
            [entry.canonical_index for entry in self._entries],
            dtype=np.int64,
        )

    def pack(self, matrix: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the free-parameter vector read from a 3x3 matrix."""
        mat: NDArray[np.float64] = np.asarray(matrix, dtype=np.float64)
        if mat.shape != (3, 3):
            raise ParameterLayoutError("matrix must have shape (3, 3)")
        return np.asarray(
            [mat[entry.row, entry.col] for entry in self._entries],
            dtype=np.float64,
        )

    def unpack(self, params: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the 3x3 matrix for a free-parameter vector.

        Entries not in the layout are exactly zero.
        """
        vec: NDArray[np.float64] = np.asarray(params, dtype=np.float64)
        if vec.shape != (self.dim(),):
            raise ParameterLayoutError(f"params must have shape ({self.dim()},)")
        matrix: NDArray[np.float64] = np.zeros((3, 3), dtype=np.float64)
        for entry in self._entries:
            matrix[entry.row, entry.col] = vec[entry.index]
        return matrix

    def embed_covariance(self, cov: NDArray[np.float64]) -> NDArray[np.float64]:
        """Embed a free-parameter covariance into the 9x9 canonical order.

        Rows and columns of parameters outside the layout are exactly zero.
        """
        cov_in: NDArray[np.float64] = np.asarray(cov, dtype=np.float64)
        dim: int = self.dim()
        if cov_in.shape != (dim, dim):
            raise ParameterLayoutError(f"cov must have shape ({dim}, {dim})")
        full: NDArray[np.float64] = np.zeros(
            (GENERAL_UNKNOWNS, GENERAL_UNKNOWNS),
            dtype=np.float64,
        )
        idx: NDArray[np.int64] = self.canonical_indices()
        full[np.ix_(idx, idx)] = cov_in
        return full

    def validate(self) -> None:
        """Validate the layout ordering."""
        previous: int = -1
        for position, entry in enumerate(self._entries):
            if entry.index != position:
                raise ParameterLayoutError("Entries must be contiguous")
            if entry.canonical_index <= previous:
                raise ParameterLayoutError("Entries must follow canonical order")
            previous = entry.canonical_index
        expected: int = COMMON_AXIS_UNKNOWNS if self.common_axis else GENERAL_UNKNOWNS
        if len(self._entries) != expected:
            raise ParameterLayoutError("Layout does not match the requested mode")
