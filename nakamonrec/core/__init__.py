"""Ambient services: configuration, logging, errors, timeline, diagnostics."""

from .errors import AssetLoadError, CalibrationFailure, NakamonError, PersistenceError

__all__ = ["AssetLoadError", "CalibrationFailure", "NakamonError", "PersistenceError"]
