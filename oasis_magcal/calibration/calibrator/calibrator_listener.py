################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

from __future__ import annotations

from typing import TYPE_CHECKING
from typing import Protocol


if TYPE_CHECKING:
    from oasis_magcal.calibration.calibrator.known_hard_iron_calibrator import (
        KnownHardIronCalibrator,
    )


class CalibratorListener(Protocol):
    """Receives synchronous notifications around a calibration run.

    Both callbacks run on the thread calling calibrate(), while the calibrator
    is RUNNING. on_calibrate_end is only called after a successful fit.
    """

    def on_calibrate_start(self, calibrator: KnownHardIronCalibrator) -> None: ...

    def on_calibrate_end(self, calibrator: KnownHardIronCalibrator) -> None: ...
