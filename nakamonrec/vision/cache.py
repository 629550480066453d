from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Tuple

import numpy as np


from .matcher import resize_template
from .templates import TemplateStore


logger = logging.getLogger(__name__)

MICRO_SCALES: Tuple[float, ...] = (0.98, 1.0, 1.02)

Variants = Tuple[np.ndarray, ...]


class ScaledTemplateCache:
    """Resized template variants for the active UI scale.

    Rebuilding is a pure function of (templates, scale); preparing the same scale
    twice is a no-op. Variants are swapped in atomically so readers always see a
    complete set.
    """

    def __init__(self, store: TemplateStore, micro_scales: Tuple[float, ...] = MICRO_SCALES):
        self.store = store
        self.micro_scales = tuple(micro_scales)
        self._lock = threading.Lock()
        self._scale: Optional[float] = None
        self._monsters: List[Tuple[str, Variants]] = []
        self._markers: Dict[str, Variants] = {}

    @property
    def scale(self) -> Optional[float]:
        with self._lock:
            return self._scale

    def _variants(self, image: Optional[np.ndarray], scale: float) -> Variants:
        if image is None:
            return ()
        out = []
        for micro in self.micro_scales:
            tpl = resize_template(image, scale * micro)
            if tpl is not None:
                out.append(tpl)
        return tuple(out)

    def prepare(self, scale: float) -> bool:
        """Build variants at ``scale``; returns False if already prepared for it."""
        with self._lock:
            if self._scale is not None and self._scale == scale:
                return False
        monsters = [(m.name, self._variants(m.image, scale)) for m in self.store.monsters]
        markers: Dict[str, Variants] = {}
        for key in ("vs", "win", "lose", "select"):
            markers[key] = self._variants(self.store.marker(key), scale)
        with self._lock:
            self._monsters = monsters
            self._markers = markers
            self._scale = scale
        logger.info("Template cache rebuilt for ui_scale=%.3f (%d monsters)", scale, len(monsters))
        return True

    def monster_variants(self) -> List[Tuple[str, Variants]]:
        with self._lock:
            return list(self._monsters)

    def marker_variants(self, key: str) -> Variants:
        with self._lock:
            return self._markers.get(key, ())

    def clear(self) -> None:
        with self._lock:
            self._scale = None
            self._monsters = []
            self._markers = {}
