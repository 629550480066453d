"""Calibration package: region profile, YAML persistence and auto-calibration."""
from .profile import GROUPS, CalibrationProfile
from .store import CalibrationStore
from .manager import (
    CalibrationManager,
    CalibrationProposal,
    auto_calibrate_battle_start,
    auto_calibrate_party_selector,
    auto_calibrate_result,
)

__all__ = [
    "GROUPS",
    "CalibrationProfile",
    "CalibrationStore",
    "CalibrationManager",
    "CalibrationProposal",
    "auto_calibrate_battle_start",
    "auto_calibrate_party_selector",
    "auto_calibrate_result",
]
