"""Vision package: region geometry, template store, matching and caching.

Submodules:
- frames: colour conversion helpers for captured rasters
- regions: resolution-independent region boxes and clamped crops
- matcher: normalized cross-correlation, multi-scale search
- templates: monster catalog and UI marker loading
- cache: per-scale resized template variants
"""
from .frames import to_bgr, to_gray
from .regions import RegionBox, clamp_rect, crop
from .matcher import MatchResult, best_score, correlate, match_multi_scale, resize_template
from .templates import MonsterTemplate, TemplateStore
from .cache import ScaledTemplateCache

__all__ = [
    "to_bgr",
    "to_gray",
    "RegionBox",
    "clamp_rect",
    "crop",
    "MatchResult",
    "best_score",
    "correlate",
    "match_multi_scale",
    "resize_template",
    "MonsterTemplate",
    "TemplateStore",
    "ScaledTemplateCache",
]
