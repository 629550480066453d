from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import cv2
import numpy as np

from nakamonrec.core.errors import AssetLoadError

from .frames import to_bgr


logger = logging.getLogger(__name__)

CATALOG_FILE = "monsters.json"
TEMPLATE_DIR = "templates"
MARKER_FILES: Dict[str, str] = {
    "vs": "VS.png",
    "win": "WIN.png",
    "lose": "LOSE.png",
    "select": "SELECT.png",
}


@dataclass
class MonsterTemplate:
    name: str
    file_name: str
    image: Optional[np.ndarray] = None

    @property
    def loaded(self) -> bool:
        return self.image is not None


def read_image(path: Path) -> np.ndarray:
    """Decode an image file to BGR. Raises AssetLoadError on any failure."""
    try:
        # np.fromfile + imdecode tolerates non-ASCII paths, cv2.imread does not on Windows
        buf = np.fromfile(str(path), dtype=np.uint8)
    except OSError as exc:
        raise AssetLoadError(str(path), str(exc)) from exc
    img = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED) if buf.size else None
    if img is None:
        raise AssetLoadError(str(path), "not a decodable image")
    return to_bgr(img)


class TemplateStore:
    """Monster catalog plus the VS/WIN/LOSE/SELECT markers, decoded once per session."""

    def __init__(self, assets_dir: str | Path, catalog_file: str = CATALOG_FILE):
        self.assets_dir = Path(assets_dir)
        self.catalog_path = self.assets_dir / catalog_file
        self.template_dir = self.assets_dir / TEMPLATE_DIR
        self._lock = threading.Lock()
        self._catalog: List[MonsterTemplate] = []
        self._markers: Dict[str, np.ndarray] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def read_catalog(self) -> List[MonsterTemplate]:
        try:
            with open(self.catalog_path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise AssetLoadError(str(self.catalog_path), str(exc)) from exc
        if not isinstance(raw, list):
            raise AssetLoadError(str(self.catalog_path), "catalog must be a list")
        entries: List[MonsterTemplate] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            name = item.get("name")
            file_name = item.get("fileName")
            if not name or not file_name:
                logger.warning("Catalog entry missing name/fileName: %r", item)
                continue
            entries.append(MonsterTemplate(str(name), str(file_name)))
        return entries

    def load(self) -> "TemplateStore":
        """Decode every catalog entry and marker.

        A missing or corrupt catalog raises AssetLoadError. Individual images that
        fail to decode are logged and skipped; they never match anything.
        """
        entries = self.read_catalog()
        for entry in entries:
            try:
                entry.image = read_image(self.template_dir / entry.file_name)
            except AssetLoadError as exc:
                logger.warning("Skipping monster template %s: %s", entry.name, exc)
        markers: Dict[str, np.ndarray] = {}
        for key, file_name in MARKER_FILES.items():
            try:
                markers[key] = read_image(self.template_dir / file_name)
            except AssetLoadError as exc:
                logger.warning("Marker %s unavailable: %s", key, exc)
        with self._lock:
            self._catalog = entries
            self._markers = markers
        loaded = sum(1 for e in entries if e.loaded)
        logger.info("Loaded %d/%d monster templates, markers=%s", loaded, len(entries), sorted(markers))
        return self

    def add_monster(self, name: str, image: np.ndarray, file_name: str = "") -> MonsterTemplate:
        entry = MonsterTemplate(name, file_name or f"{name}.png", to_bgr(image))
        with self._lock:
            self._catalog = [e for e in self._catalog if e.name != name] + [entry]
        return entry

    def set_marker(self, key: str, image: Optional[np.ndarray]) -> None:
        if key not in MARKER_FILES:
            raise KeyError(f"unknown marker: {key}")
        with self._lock:
            if image is None:
                self._markers.pop(key, None)
            else:
                self._markers[key] = to_bgr(image)

    def release(self) -> None:
        with self._lock:
            self._catalog = []
            self._markers = {}

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def catalog(self) -> List[MonsterTemplate]:
        with self._lock:
            return list(self._catalog)

    @property
    def monsters(self) -> List[MonsterTemplate]:
        """Catalog entries whose image decoded."""
        with self._lock:
            return [e for e in self._catalog if e.loaded]

    def names(self) -> List[str]:
        return [e.name for e in self.catalog]

    def marker(self, key: str) -> Optional[np.ndarray]:
        with self._lock:
            return self._markers.get(key)
