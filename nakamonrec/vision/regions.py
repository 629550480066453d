from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np


Rect = Tuple[int, int, int, int]


def clamp_rect(x: int, y: int, w: int, h: int, frame_w: int, frame_h: int) -> Optional[Rect]:
    """Clamp a pixel rect into [0, frame_w) x [0, frame_h); None when nothing is left."""
    w = min(w, frame_w)
    h = min(h, frame_h)
    if w <= 0 or h <= 0:
        return None
    x = max(0, min(x, frame_w - w))
    y = max(0, min(y, frame_h - h))
    return x, y, w, h


@dataclass(frozen=True)
class RegionBox:
    """Region of interest: centre as a fraction of the frame, size in reference pixels.

    ``width``/``height`` are expressed at the reference UI scale; multiply by the
    calibration ``ui_scale`` before applying them to a live frame.
    """

    center_x: float
    center_y: float
    width: int
    height: int

    def scaled(self, factor: float) -> "RegionBox":
        return RegionBox(
            self.center_x,
            self.center_y,
            max(1, int(round(self.width * factor))),
            max(1, int(round(self.height * factor))),
        )

    def pixel_rect(self, frame_w: int, frame_h: int, scale: float = 1.0) -> Optional[Rect]:
        w = int(round(self.width * scale))
        h = int(round(self.height * scale))
        cx = int(round(frame_w * self.center_x))
        cy = int(round(frame_h * self.center_y))
        return clamp_rect(cx - w // 2, cy - h // 2, w, h, frame_w, frame_h)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "centerX": float(self.center_x),
            "centerY": float(self.center_y),
            "width": int(self.width),
            "height": int(self.height),
        }

    @classmethod
    def from_dict(cls, data: Any, default: "RegionBox") -> "RegionBox":
        """Tolerant decode: any missing or malformed field keeps the default's value."""
        if not isinstance(data, Mapping):
            return default

        def pick(key: str, cast, fallback):
            try:
                value = cast(data[key])
            except (KeyError, TypeError, ValueError):
                return fallback
            return value

        return cls(
            pick("centerX", float, default.center_x),
            pick("centerY", float, default.center_y),
            pick("width", int, default.width),
            pick("height", int, default.height),
        )


def crop(frame: np.ndarray, box: RegionBox, scale: float = 1.0) -> Optional[np.ndarray]:
    """Crop ``box`` out of ``frame``; None when the clamped region is empty."""
    frame_h, frame_w = frame.shape[:2]
    rect = box.pixel_rect(frame_w, frame_h, scale)
    if rect is None:
        return None
    x, y, w, h = rect
    return frame[y : y + h, x : x + w]
