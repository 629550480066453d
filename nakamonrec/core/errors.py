from __future__ import annotations


class NakamonError(Exception):
    """Base class for recoverable recorder errors."""


class AssetLoadError(NakamonError):
    """A template asset is missing or could not be decoded."""

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"failed to load asset {path}: {reason}" if reason else f"failed to load asset {path}")


class CalibrationFailure(NakamonError):
    """Auto-calibration could not clear its acceptance floors."""

    def __init__(self, group: str, reason: str = "") -> None:
        self.group = group
        self.reason = reason
        super().__init__(f"calibration failed for {group}: {reason}" if reason else f"calibration failed for {group}")


class PersistenceError(NakamonError):
    """Reading or writing calibration or history storage failed."""
