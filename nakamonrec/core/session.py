from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

import cv2  # type: ignore
import numpy as np  # type: ignore


logger = logging.getLogger(__name__)


def _now_id() -> str:
    return datetime.utcnow().strftime("%Y%m%d_%H%M%S_%f")


class DiagnosticsRecorder:
    """Best-effort frame snapshots for offline recalibration.

    Directory layout:
      <base_dir>/<timestamp>_<label>/
        frame.png
        meta.json
    """

    def __init__(self, base_dir: str = "logs/diagnostics", enabled: bool = True) -> None:
        self.base_dir = base_dir
        self.enabled = enabled
        self._lock = threading.Lock()

    def save_frame(self, frame: np.ndarray, label: str, meta: Optional[Dict[str, Any]] = None) -> Optional[str]:
        if not self.enabled or frame is None:
            return None
        with self._lock:
            folder = os.path.join(self.base_dir, f"{_now_id()}_{label}")
            try:
                os.makedirs(folder, exist_ok=True)
                if not cv2.imwrite(os.path.join(folder, "frame.png"), frame):
                    logger.warning("diagnostic frame not written | label=%s", label)
                    return None
                with open(os.path.join(folder, "meta.json"), "w", encoding="utf-8") as f:
                    json.dump(meta or {}, f, indent=2, ensure_ascii=False)
            except (OSError, cv2.error):
                logger.exception("diagnostic snapshot failed | label=%s", label)
                return None
        logger.info("diagnostic snapshot saved | %s", folder)
        return folder

    @staticmethod
    def list_snapshots(base_dir: str = "logs/diagnostics") -> List[str]:
        if not os.path.isdir(base_dir):
            return []
        out: List[str] = []
        for d in os.listdir(base_dir):
            p = os.path.join(base_dir, d)
            if os.path.isdir(p):
                out.append(d)
        out.sort(reverse=True)
        return out
