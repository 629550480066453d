"""Synthetic frames and test doubles shared by the test modules.

Noise rasters are single-channel values stacked to BGR so colour and
grayscale correlation agree, and independent noise correlates near zero.
"""
from __future__ import annotations

import json
import os
from typing import Any, Callable, Dict, List, Optional, Tuple

import cv2
import numpy as np

from nakamonrec.core.config import RecorderSettings


def noise(h: int, w: int, seed: int) -> np.ndarray:
    rng = np.random.default_rng(seed)
    gray = rng.integers(0, 256, size=(h, w), dtype=np.uint8)
    return np.dstack([gray, gray, gray])


def paste(frame: np.ndarray, tpl: np.ndarray, x: int, y: int) -> np.ndarray:
    h, w = tpl.shape[:2]
    frame[y : y + h, x : x + w] = tpl
    return frame


def blend(frame: np.ndarray, tpl: np.ndarray, x: int, y: int, alpha: float) -> np.ndarray:
    h, w = tpl.shape[:2]
    base = frame[y : y + h, x : x + w].astype(np.float64)
    mixed = alpha * tpl.astype(np.float64) + (1.0 - alpha) * base
    frame[y : y + h, x : x + w] = np.clip(np.round(mixed), 0, 255).astype(np.uint8)
    return frame


class ManualScheduler:
    """Collects scheduled tasks; tests run them explicitly, in order."""

    def __init__(self) -> None:
        self.queue: List[Tuple[float, Callable[..., Any], tuple]] = []
        self.executed = 0

    def schedule(self, delay_s: float, fn: Callable[..., Any], *args: Any):
        self.queue.append((delay_s, fn, args))
        return True

    def run_next(self) -> bool:
        if not self.queue:
            return False
        _, fn, args = self.queue.pop(0)
        self.executed += 1
        fn(*args)
        return True

    def run_all(self, limit: int = 1000) -> int:
        n = 0
        while n < limit and self.run_next():
            n += 1
        return n


class FakeDiagnostics:
    def __init__(self) -> None:
        self.saved: List[Tuple[str, Dict[str, Any]]] = []

    def save_frame(self, frame, label: str, meta: Optional[Dict[str, Any]] = None):
        self.saved.append((label, meta or {}))
        return label


def write_assets(root: str, monsters: Dict[str, np.ndarray], markers: Dict[str, np.ndarray]) -> str:
    """Lay out an assets directory: monsters.json plus templates/*.png."""
    tpl_dir = os.path.join(root, "templates")
    os.makedirs(tpl_dir, exist_ok=True)
    catalog = []
    for name, img in monsters.items():
        file_name = f"{name}.png"
        cv2.imwrite(os.path.join(tpl_dir, file_name), img)
        catalog.append({"name": name, "fileName": file_name})
    with open(os.path.join(root, "monsters.json"), "w", encoding="utf-8") as fh:
        json.dump(catalog, fh)
    names = {"vs": "VS.png", "win": "WIN.png", "lose": "LOSE.png", "select": "SELECT.png"}
    for key, img in markers.items():
        cv2.imwrite(os.path.join(tpl_dir, names[key]), img)
    return root


def temp_settings(root: str) -> RecorderSettings:
    s = RecorderSettings()
    s.assets_dir = os.path.join(root, "assets")
    s.data_dir = os.path.join(root, "data")
    s.calibration_path = os.path.join(root, "data", "calibration.yml")
    s.log_dir = os.path.join(root, "logs")
    s.diagnostics_dir = os.path.join(root, "logs", "diagnostics")
    s.capture_poll_interval_s = 0.01
    return s
