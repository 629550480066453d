from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

import yaml

from nakamonrec.core.errors import PersistenceError

from .profile import CalibrationProfile


logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, text: str) -> None:
    """Write via a sibling temp file and os.replace so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp, path)
    except OSError:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class CalibrationStore:
    """Single YAML blob holding the calibration profile."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[CalibrationProfile]:
        """Stored profile, or None when nothing has been saved yet."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except OSError as exc:
            raise PersistenceError(f"cannot read calibration {self.path}: {exc}") from exc
        except yaml.YAMLError as exc:
            logger.warning("Calibration file %s unreadable, using defaults: %s", self.path, exc)
            return CalibrationProfile()
        return CalibrationProfile.from_dict(data)

    def save(self, profile: CalibrationProfile) -> None:
        text = yaml.safe_dump(profile.to_dict(), sort_keys=False)
        try:
            atomic_write_text(self.path, text)
        except OSError as exc:
            raise PersistenceError(f"cannot write calibration {self.path}: {exc}") from exc
        logger.info("Calibration saved to %s (ui_scale=%.3f)", self.path, profile.ui_scale)
