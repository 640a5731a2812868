################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Lifecycle state and state errors of a calibrator."""

from __future__ import annotations

from enum import Enum


class CalibratorState(Enum):
    """Lifecycle state of a calibrator."""

    NOT_READY = "not_ready"
    READY = "ready"
    RUNNING = "running"


class LockedError(Exception):
    """Raised when a calibrator is modified or started while running."""


class NotReadyError(Exception):
    """Raised when calibrate() is called before the calibrator is ready."""


class CalibrationError(Exception):
    """Raised when the numerical fit fails."""
