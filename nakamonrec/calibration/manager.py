from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import cv2
import numpy as np

from nakamonrec.core.errors import CalibrationFailure
from nakamonrec.vision.frames import to_bgr, to_gray
from nakamonrec.vision.matcher import (
    PARTY_SCALES,
    MatchResult,
    correlate,
    match_multi_scale,
    resize_template,
    top_peaks,
)
from nakamonrec.vision.regions import RegionBox
from nakamonrec.vision.templates import MonsterTemplate, TemplateStore

from .profile import (
    ENEMY_PARTY_REFERENCE,
    GROUPS,
    MONSTER_SIZE,
    MY_PARTY_REFERENCE,
    VS_REFERENCE,
    CalibrationProfile,
)
from .store import CalibrationStore


logger = logging.getLogger(__name__)

VS_BAND: Tuple[float, float] = (0.3, 0.7)
RESULT_BAND: Tuple[float, float] = (0.0, 0.5)
SLOT_SEARCH_FRACTION = 0.15
SLOT_LOCAL_FACTORS: Tuple[float, ...] = (0.9, 1.0, 1.1)
SLOT_FLOOR = 0.55
PARTY_FLOOR = 0.25
PARTY_INSTANCES = 3

# Manual override keys -> (profile field, expected box count; None means a single box)
GROUP_FIELDS: Dict[str, Dict[str, Tuple[str, Optional[int]]]] = {
    "battle_start": {
        "vs": ("vs_box", None),
        "my_party": ("my_party_boxes", 4),
        "enemy_party": ("enemy_party_boxes", 4),
    },
    "party_select": {"party_select": ("party_select_boxes", 3)},
    "win": {"win": ("win_box", None)},
    "lose": {"lose": ("lose_box", None)},
}


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _to_reference(box: RegionBox, scale: float) -> RegionBox:
    """Convert an observed pixel footprint to reference units."""
    if scale == 1.0:
        return box
    return box.scaled(1.0 / scale)


@dataclass(frozen=True)
class PartySelectorMatch:
    boxes: Tuple[RegionBox, ...]
    scores: Tuple[float, ...]
    scale: float


@dataclass(frozen=True)
class CalibrationProposal:
    """Candidate profile produced by auto-calibration, awaiting acceptance."""

    group: str
    profile: CalibrationProfile
    score: float
    scale: float
    created_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group": self.group,
            "score": round(self.score, 4),
            "scale": self.scale,
            "uiScale": self.profile.ui_scale,
            "boxes": {
                key: [b.to_dict() for b in boxes]
                for key, boxes in self.profile.group_boxes(self.group).items()
            },
            "created_at": self.created_at,
        }


# ----------------------------------------------------------------------
# Auto-calibration algorithms
# ----------------------------------------------------------------------
def _best_monster_near(
    frame: np.ndarray,
    monsters: Sequence[MonsterTemplate],
    est_x: float,
    est_y: float,
    scale: float,
) -> Optional[Tuple[float, int, int, int, int]]:
    """Search a window around (est_x, est_y) for any monster. Returns (score, cx, cy, w, h) in pixels."""
    frame_h, frame_w = frame.shape[:2]
    search_w = int(frame_w * SLOT_SEARCH_FRACTION)
    search_h = int(frame_h * SLOT_SEARCH_FRACTION)
    x0 = _clamp(int(est_x - search_w / 2), 0, max(0, frame_w - search_w))
    y0 = _clamp(int(est_y - search_h / 2), 0, max(0, frame_h - search_h))
    roi = frame[y0 : y0 + search_h, x0 : x0 + search_w]

    best: Optional[Tuple[float, int, int, int, int]] = None
    for monster in monsters:
        for factor in SLOT_LOCAL_FACTORS:
            tpl = resize_template(monster.image, scale * factor)
            if tpl is None:
                continue
            res = correlate(roi, tpl)
            if res is None:
                continue
            _, max_val, _, (mx, my) = cv2.minMaxLoc(res)
            if best is None or max_val > best[0]:
                th, tw = tpl.shape[:2]
                best = (float(max_val), x0 + mx + tw // 2, y0 + my + th // 2, tw, th)
    if best is None or best[0] <= SLOT_FLOOR:
        return None
    return best


def auto_calibrate_battle_start(
    frame: np.ndarray,
    templates: TemplateStore,
    base: Optional[CalibrationProfile] = None,
) -> Optional[Tuple[CalibrationProfile, MatchResult]]:
    """Locate the VS marker, derive ui_scale from it and place all eight monster slots.

    Slots are extrapolated from the VS centre using the reference layout, then
    refined by a local monster search. Slots with no confident match keep the
    extrapolated box.
    """
    base = base or CalibrationProfile()
    vs = match_multi_scale(frame, templates.marker("vs"), band=VS_BAND)
    if vs is None:
        return None
    frame_h, frame_w = frame.shape[:2]
    scale = vs.scale
    vs_cx = vs.location.center_x * frame_w
    vs_cy = vs.location.center_y * frame_h
    monsters = templates.monsters

    def place(ref: Tuple[int, int]) -> RegionBox:
        est_x = vs_cx + (ref[0] - VS_REFERENCE[0]) * scale
        est_y = vs_cy + (ref[1] - VS_REFERENCE[1]) * scale
        found = _best_monster_near(frame, monsters, est_x, est_y, scale)
        if found is None:
            return RegionBox(est_x / frame_w, est_y / frame_h, MONSTER_SIZE[0], MONSTER_SIZE[1])
        _, cx, cy, w, h = found
        return _to_reference(RegionBox(cx / frame_w, cy / frame_h, w, h), scale)

    profile = base.with_boxes(
        ui_scale=scale,
        vs_box=_to_reference(vs.location, scale),
        my_party_boxes=[place(ref) for ref in MY_PARTY_REFERENCE],
        enemy_party_boxes=[place(ref) for ref in ENEMY_PARTY_REFERENCE],
    )
    return profile, vs


def auto_calibrate_party_selector(
    frame: np.ndarray,
    marker: Optional[np.ndarray],
    scales: Sequence[float] = PARTY_SCALES,
    floor: float = PARTY_FLOOR,
) -> Optional[PartySelectorMatch]:
    """Find the three party selector marks in one grayscale pass per scale.

    A scale qualifies only if all three peaks reach ``floor``; the qualifying
    scale with the highest score sum wins. Boxes are returned top to bottom in
    observed pixels.
    """
    if marker is None:
        return None
    gray = to_gray(frame)
    tpl_gray = to_gray(marker)
    frame_h, frame_w = gray.shape[:2]

    best: Optional[Tuple[float, float, List, int, int]] = None
    for scale in scales:
        tpl = resize_template(tpl_gray, scale)
        if tpl is None:
            continue
        res = correlate(gray, tpl)
        if res is None:
            continue
        th, tw = tpl.shape[:2]
        peaks = top_peaks(res, PARTY_INSTANCES, tw, th)
        if any(p.score < floor for p in peaks):
            continue
        total = sum(p.score for p in peaks)
        if best is None or total > best[0]:
            best = (total, scale, peaks, tw, th)

    if best is None:
        return None
    _, scale, peaks, tw, th = best
    peaks = sorted(peaks, key=lambda p: p.y)
    boxes = tuple(
        RegionBox((p.x + tw // 2) / frame_w, (p.y + th // 2) / frame_h, tw, th) for p in peaks
    )
    return PartySelectorMatch(boxes, tuple(p.score for p in peaks), scale)


def auto_calibrate_result(frame: np.ndarray, marker: Optional[np.ndarray]) -> Optional[MatchResult]:
    return match_multi_scale(frame, marker, band=RESULT_BAND)


# ----------------------------------------------------------------------
class CalibrationManager:
    """Owns the live calibration profile: auto proposals, acceptance, manual overrides."""

    def __init__(self, templates: TemplateStore, store: Optional[CalibrationStore] = None) -> None:
        self.templates = templates
        self.store = store
        self._lock = threading.Lock()
        self._profile = CalibrationProfile()
        self._proposals: Dict[str, CalibrationProposal] = {}

    @property
    def profile(self) -> CalibrationProfile:
        with self._lock:
            return self._profile

    def load(self) -> CalibrationProfile:
        if self.store is None:
            return self.profile
        profile = self.store.load() or CalibrationProfile()
        with self._lock:
            self._profile = profile
        logger.info("Calibration loaded (ui_scale=%.3f)", profile.ui_scale)
        return profile

    def set_profile(self, profile: CalibrationProfile, persist: bool = True) -> CalibrationProfile:
        if persist and self.store is not None:
            self.store.save(profile)
        with self._lock:
            self._profile = profile
        return profile

    def reset(self, persist: bool = True) -> CalibrationProfile:
        with self._lock:
            self._proposals.clear()
        return self.set_profile(CalibrationProfile(), persist=persist)

    # ------------------------------------------------------------------
    def set_group(
        self,
        group: str,
        boxes: Mapping[str, Any],
        ui_scale: Optional[float] = None,
        persist: bool = True,
    ) -> CalibrationProfile:
        """Manual override of one group. ``boxes`` maps keys to RegionBox or lists of them."""
        fields = GROUP_FIELDS.get(group)
        if fields is None:
            raise KeyError(f"unknown calibration group: {group}")
        changes: Dict[str, Any] = {}
        for key, value in boxes.items():
            if key not in fields:
                raise ValueError(f"unexpected key {key!r} for group {group}")
            attr, count = fields[key]
            if count is None:
                if isinstance(value, (list, tuple)):
                    if len(value) != 1:
                        raise ValueError(f"{key} takes exactly one box")
                    value = value[0]
                changes[attr] = value
            else:
                if len(value) != count:
                    raise ValueError(f"{key} takes exactly {count} boxes, got {len(value)}")
                changes[attr] = tuple(value)
        if ui_scale is not None:
            if group != "battle_start":
                raise ValueError("ui_scale can only be set with the battle_start group")
            changes["ui_scale"] = float(ui_scale)
        profile = self.profile.with_boxes(**changes)
        logger.info("Manual calibration override for %s: %s", group, sorted(changes))
        return self.set_profile(profile, persist=persist)

    # ------------------------------------------------------------------
    def propose(self, group: str, frame: Optional[np.ndarray]) -> CalibrationProposal:
        if group not in GROUPS:
            raise KeyError(f"unknown calibration group: {group}")
        if frame is None:
            raise CalibrationFailure(group, "no frame available")
        frame = to_bgr(frame)
        base = self.profile
        if group == "battle_start":
            found = auto_calibrate_battle_start(frame, self.templates, base)
            if found is None:
                raise CalibrationFailure(group, "VS marker not found")
            candidate, vs = found
            score, scale = vs.score, vs.scale
        elif group == "party_select":
            match = auto_calibrate_party_selector(frame, self.templates.marker("select"))
            if match is None:
                raise CalibrationFailure(group, "three selector marks not found")
            boxes = [_to_reference(b, base.ui_scale) for b in match.boxes]
            candidate = base.with_boxes(party_select_boxes=boxes)
            score, scale = min(match.scores), match.scale
        else:
            result = auto_calibrate_result(frame, self.templates.marker(group))
            if result is None:
                raise CalibrationFailure(group, f"{group.upper()} marker not found")
            box = _to_reference(result.location, base.ui_scale)
            candidate = base.with_boxes(**{f"{group}_box": box})
            score, scale = result.score, result.scale

        proposal = CalibrationProposal(group, candidate, float(score), float(scale), time.time())
        with self._lock:
            self._proposals[group] = proposal
        logger.info("Calibration proposal %s score=%.3f scale=%.2f", group, score, scale)
        return proposal

    def pending(self, group: str) -> Optional[CalibrationProposal]:
        with self._lock:
            return self._proposals.get(group)

    def accept(self, group: str, persist: bool = True) -> CalibrationProfile:
        """Merge the pending proposal's group into the live profile and persist it."""
        with self._lock:
            proposal = self._proposals.pop(group, None)
        if proposal is None:
            raise CalibrationFailure(group, "nothing to accept")
        profile = self.profile.merge_group(group, proposal.profile)
        return self.set_profile(profile, persist=persist)

    def discard(self, group: str) -> None:
        with self._lock:
            self._proposals.pop(group, None)

    def to_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "profile": self._profile.to_dict(),
                "pending": {k: v.to_dict() for k, v in self._proposals.items()},
            }
