"""Normalized cross-correlation matching over fixed scale ladders."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .frames import to_gray
from .regions import RegionBox


DEFAULT_SCALES: Tuple[float, ...] = (0.5, 0.7, 0.9, 1.0, 1.1, 1.3, 1.5, 1.7, 1.9, 2.1, 2.3, 2.5)
PARTY_SCALES: Tuple[float, ...] = (0.7, 1.0, 1.3, 1.6, 1.9, 2.2, 2.5)
GENERIC_FLOOR = 0.4
FULL_BAND: Tuple[float, float] = (0.0, 1.0)


@dataclass(frozen=True)
class MatchResult:
    """Best placement of a template in a scene.

    ``location`` carries the matched footprint in observed pixels, not reference units.
    """

    score: float
    location: RegionBox
    scale: float


@dataclass(frozen=True)
class Peak:
    score: float
    x: int
    y: int


def resize_template(template: np.ndarray, scale: float) -> Optional[np.ndarray]:
    """Bicubic resize; scale 1.0 returns the template untouched."""
    if scale == 1.0:
        return template
    h, w = template.shape[:2]
    new_w = int(round(w * scale))
    new_h = int(round(h * scale))
    if new_w < 1 or new_h < 1:
        return None
    return cv2.resize(template, (new_w, new_h), interpolation=cv2.INTER_CUBIC)


def fits(template: np.ndarray, region: np.ndarray) -> bool:
    return template.shape[0] <= region.shape[0] and template.shape[1] <= region.shape[1]


def correlate(region: np.ndarray, template: np.ndarray) -> Optional[np.ndarray]:
    """TM_CCOEFF_NORMED surface clipped to [-1, 1]; None if the template does not fit."""
    if region is None or template is None or region.size == 0 or template.size == 0:
        return None
    if not fits(template, region):
        return None
    if region.ndim != template.ndim:
        region = to_gray(region)
        template = to_gray(template)
    res = cv2.matchTemplate(region, template, cv2.TM_CCOEFF_NORMED)
    res = np.nan_to_num(res, nan=-1.0, posinf=1.0, neginf=-1.0)
    return np.clip(res, -1.0, 1.0)


def best_score(region: np.ndarray, template: np.ndarray) -> Optional[float]:
    res = correlate(region, template)
    if res is None:
        return None
    return float(res.max())


def best_score_of(region: np.ndarray, variants: Iterable[np.ndarray]) -> float:
    """Max score over variants that fit the region, 0.0 when none fit."""
    best = None
    for tpl in variants:
        score = best_score(region, tpl)
        if score is not None and (best is None or score > best):
            best = score
    return 0.0 if best is None else best


def _band_rows(rows: int, band: Tuple[float, float]) -> Tuple[int, int]:
    top, bottom = band
    start = max(0, min(int(rows * top), rows - 1))
    end = max(start + 1, min(int(rows * bottom), rows))
    return start, end


def match_multi_scale(
    scene: np.ndarray,
    template: Optional[np.ndarray],
    *,
    grayscale: bool = False,
    scales: Sequence[float] = DEFAULT_SCALES,
    band: Tuple[float, float] = FULL_BAND,
    floor: float = GENERIC_FLOOR,
) -> Optional[MatchResult]:
    """Search ``scene`` for ``template`` over ``scales`` within a vertical band.

    Ties keep the earlier (smaller) scale. Returns None unless the best score
    exceeds ``floor``.
    """
    if template is None or scene is None or scene.size == 0:
        return None
    work = to_gray(scene) if grayscale else scene
    tpl_src = to_gray(template) if grayscale else template
    frame_h, frame_w = work.shape[:2]
    start_y, end_y = _band_rows(frame_h, band)
    roi = work[start_y:end_y]

    best_val = -1.0
    best_loc = (0, 0)
    best_size = (0, 0)
    best_scale = 1.0
    for scale in scales:
        tpl = resize_template(tpl_src, scale)
        if tpl is None:
            continue
        res = correlate(roi, tpl)
        if res is None:
            continue
        _, max_val, _, max_loc = cv2.minMaxLoc(res)
        if max_val > best_val:
            best_val = float(max_val)
            best_loc = max_loc
            best_size = (tpl.shape[1], tpl.shape[0])
            best_scale = scale

    if best_val <= floor:
        return None
    tw, th = best_size
    cx = (best_loc[0] + tw // 2) / float(frame_w)
    cy = (best_loc[1] + start_y + th // 2) / float(frame_h)
    return MatchResult(best_val, RegionBox(cx, cy, tw, th), best_scale)


def top_peaks(res: np.ndarray, count: int, tpl_w: int, tpl_h: int) -> List[Peak]:
    """Take the global max ``count`` times, blanking a template-sized neighbourhood each time.

    Works on a copy; suppressed cells are set to -1.
    """
    surface = res.copy()
    rows, cols = surface.shape[:2]
    peaks: List[Peak] = []
    for _ in range(count):
        _, max_val, _, (x, y) = cv2.minMaxLoc(surface)
        peaks.append(Peak(float(max_val), x, y))
        x0 = max(0, x - tpl_w)
        y0 = max(0, y - tpl_h)
        x1 = min(cols, x + tpl_w + 1)
        y1 = min(rows, y + tpl_h + 1)
        surface[y0:y1, x0:x1] = -1.0
    return peaks
