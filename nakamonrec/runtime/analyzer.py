from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from nakamonrec.calibration.profile import CalibrationProfile
from nakamonrec.core.config import Thresholds
from nakamonrec.records.models import LOSE, WIN
from nakamonrec.vision.cache import ScaledTemplateCache
from nakamonrec.vision.frames import to_bgr
from nakamonrec.vision.matcher import best_score_of
from nakamonrec.vision.regions import RegionBox, crop


logger = logging.getLogger(__name__)


class BattleAnalyzer:
    """Stateless frame queries against the active calibration profile.

    Every query degrades to "no detection" when a region is empty or no
    template variant fits it.
    """

    def __init__(self, cache: ScaledTemplateCache, thresholds: Optional[Thresholds] = None) -> None:
        self.cache = cache
        self.thresholds = thresholds or Thresholds()
        self._lock = threading.Lock()
        self._profile = CalibrationProfile()

    @property
    def profile(self) -> CalibrationProfile:
        with self._lock:
            return self._profile

    def set_profile(self, profile: CalibrationProfile) -> None:
        with self._lock:
            self._profile = profile
        self.cache.prepare(profile.ui_scale)

    def _region(self, frame: np.ndarray, box: RegionBox, profile: CalibrationProfile) -> Optional[np.ndarray]:
        region = crop(frame, box, profile.ui_scale)
        return to_bgr(region) if region is not None else None

    def marker_score(self, frame: np.ndarray, box: RegionBox, key: str) -> float:
        region = self._region(frame, box, self.profile)
        if region is None:
            return 0.0
        return best_score_of(region, self.cache.marker_variants(key))

    def detect_selected_party(self, frame: np.ndarray) -> int:
        """Index of the highlighted party (0-2), or -1. Ties keep the lower index."""
        variants = self.cache.marker_variants("select")
        if not variants:
            return -1
        profile = self.profile
        best_idx, best = -1, -1.0
        for idx, box in enumerate(profile.party_select_boxes):
            region = self._region(frame, box, profile)
            if region is None:
                continue
            score = best_score_of(region, variants)
            if score > best:
                best_idx, best = idx, score
        if best >= self.thresholds.party:
            return best_idx
        return -1

    def is_vs_detected(self, frame: np.ndarray) -> bool:
        return self.marker_score(frame, self.profile.vs_box, "vs") > self.thresholds.vs

    def check_battle_result(self, frame: np.ndarray) -> Optional[str]:
        """WIN is checked before LOSE."""
        profile = self.profile
        if self.marker_score(frame, profile.win_box, "win") > self.thresholds.win:
            return WIN
        if self.marker_score(frame, profile.lose_box, "lose") > self.thresholds.lose:
            return LOSE
        return None

    def best_monster(self, region: np.ndarray) -> Tuple[Optional[str], float]:
        best_name: Optional[str] = None
        best = -1.0
        for name, variants in self.cache.monster_variants():
            score = best_score_of(region, variants)
            if score > best:
                best_name, best = name, score
        return best_name, best

    def identify_slots(self, frame: np.ndarray, slots: Iterable[int]) -> Dict[int, Tuple[str, float]]:
        """Match the given slot indices; only confident hits are returned.

        Pure with respect to session state: callers decide whether to commit.
        """
        profile = self.profile
        boxes = profile.slot_boxes
        found: Dict[int, Tuple[str, float]] = {}
        for idx in slots:
            region = self._region(frame, boxes[idx], profile)
            if region is None:
                continue
            name, score = self.best_monster(region)
            if name is not None and score > self.thresholds.monster:
                found[idx] = (name, score)
        return found
