"""Frame sources: live screen region via mss, or a folder of screenshots."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import List, Optional, Tuple

import mss
import numpy as np

from nakamonrec.core.errors import AssetLoadError
from nakamonrec.vision.templates import read_image


logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".bmp")


def _bgr(img) -> np.ndarray:
    # mss returns BGRA; drop alpha
    return np.asarray(img)[:, :, :3].copy()


class ScreenSource:
    """Grabs a fixed screen region (e.g. a mirrored phone window) or a whole monitor."""

    exhausted = False

    def __init__(self, monitor: int = 1, region: Optional[Tuple[int, int, int, int]] = None) -> None:
        self.monitor = monitor
        self.region = region
        self._sct: Optional[mss.base.MSSBase] = None
        self._owner: Optional[int] = None

    def _grabber(self):
        # mss handles are thread-bound; open lazily on the capture thread
        ident = threading.get_ident()
        if self._sct is None or self._owner != ident:
            self.close()
            self._sct = mss.mss()
            self._owner = ident
        return self._sct

    def read(self) -> Optional[np.ndarray]:
        sct = self._grabber()
        if self.region is not None:
            x, y, w, h = self.region
            area = {"left": x, "top": y, "width": w, "height": h}
        else:
            area = sct.monitors[self.monitor]
        return _bgr(sct.grab(area))

    def close(self) -> None:
        if self._sct is not None:
            try:
                self._sct.close()
            finally:
                self._sct = None
                self._owner = None


class ImageFolderSource:
    """Replays screenshots from a directory in file-name order; None once exhausted."""

    def __init__(self, folder: str | Path, loop: bool = False) -> None:
        self.folder = Path(folder)
        self.loop = loop
        self.paths: List[Path] = sorted(
            p for p in self.folder.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES
        ) if self.folder.is_dir() else []
        self._pos = 0

    @property
    def exhausted(self) -> bool:
        return not self.loop and self._pos >= len(self.paths)

    def read(self) -> Optional[np.ndarray]:
        for _ in range(len(self.paths)):
            if self._pos >= len(self.paths):
                if not self.loop:
                    return None
                self._pos = 0
            path = self.paths[self._pos]
            self._pos += 1
            try:
                return read_image(path)
            except AssetLoadError as exc:
                logger.warning("Skipping unreadable frame %s: %s", path.name, exc)
        return None

    def close(self) -> None:
        self._pos = len(self.paths)
