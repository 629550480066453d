"""Calibration profile: where each UI element sits, at which UI scale."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from nakamonrec.vision.regions import RegionBox


REFERENCE_WIDTH = 1080
REFERENCE_HEIGHT = 2364

# Reference layout positions (pixels on a 1080x2364 screen at ui_scale 1.0)
VS_REFERENCE: Tuple[int, int] = (540, 1260)
MY_PARTY_REFERENCE: Tuple[Tuple[int, int], ...] = ((196, 1635), (391, 1635), (585, 1635), (780, 1635))
ENEMY_PARTY_REFERENCE: Tuple[Tuple[int, int], ...] = ((201, 915), (396, 915), (590, 915), (785, 915))
PARTY_SELECT_REFERENCE: Tuple[Tuple[int, int], ...] = ((30, 1030), (30, 1430), (30, 1830))
RESULT_REFERENCE: Tuple[int, int] = (540, 720)

VS_SIZE = (280, 160)
MONSTER_SIZE = (80, 130)
PARTY_SELECT_SIZE = (50, 100)
RESULT_SIZE = (1000, 400)

SLOTS_PER_SIDE = 4
PARTY_COUNT = 3
GROUPS: Tuple[str, ...] = ("party_select", "battle_start", "win", "lose")


def reference_box(x: int, y: int, size: Tuple[int, int]) -> RegionBox:
    return RegionBox(x / REFERENCE_WIDTH, y / REFERENCE_HEIGHT, size[0], size[1])


def _default_vs() -> RegionBox:
    return reference_box(*VS_REFERENCE, VS_SIZE)


def _default_my_party() -> Tuple[RegionBox, ...]:
    return tuple(reference_box(x, y, MONSTER_SIZE) for x, y in MY_PARTY_REFERENCE)


def _default_enemy_party() -> Tuple[RegionBox, ...]:
    return tuple(reference_box(x, y, MONSTER_SIZE) for x, y in ENEMY_PARTY_REFERENCE)


def _default_party_select() -> Tuple[RegionBox, ...]:
    return tuple(reference_box(x, y, PARTY_SELECT_SIZE) for x, y in PARTY_SELECT_REFERENCE)


def _default_result() -> RegionBox:
    return reference_box(*RESULT_REFERENCE, RESULT_SIZE)


@dataclass(frozen=True)
class CalibrationProfile:
    ui_scale: float = 1.0
    vs_box: RegionBox = field(default_factory=_default_vs)
    my_party_boxes: Tuple[RegionBox, ...] = field(default_factory=_default_my_party)
    enemy_party_boxes: Tuple[RegionBox, ...] = field(default_factory=_default_enemy_party)
    party_select_boxes: Tuple[RegionBox, ...] = field(default_factory=_default_party_select)
    win_box: RegionBox = field(default_factory=_default_result)
    lose_box: RegionBox = field(default_factory=_default_result)

    def __post_init__(self) -> None:
        if not self.ui_scale > 0:
            raise ValueError(f"ui_scale must be positive, got {self.ui_scale}")
        if len(self.my_party_boxes) != SLOTS_PER_SIDE or len(self.enemy_party_boxes) != SLOTS_PER_SIDE:
            raise ValueError("exactly 4 boxes per party side are required")
        if len(self.party_select_boxes) != PARTY_COUNT:
            raise ValueError("exactly 3 party selector boxes are required")

    @property
    def slot_boxes(self) -> Tuple[RegionBox, ...]:
        """Eight monster slots: own party 0-3 then enemy party 4-7."""
        return tuple(self.my_party_boxes) + tuple(self.enemy_party_boxes)

    def with_boxes(self, **changes: Any) -> "CalibrationProfile":
        for key in ("my_party_boxes", "enemy_party_boxes", "party_select_boxes"):
            if key in changes:
                changes[key] = tuple(changes[key])
        return replace(self, **changes)

    def merge_group(self, group: str, other: "CalibrationProfile") -> "CalibrationProfile":
        """Copy one calibration group's fields from ``other``."""
        if group == "battle_start":
            return self.with_boxes(
                ui_scale=other.ui_scale,
                vs_box=other.vs_box,
                my_party_boxes=other.my_party_boxes,
                enemy_party_boxes=other.enemy_party_boxes,
            )
        if group == "party_select":
            return self.with_boxes(party_select_boxes=other.party_select_boxes)
        if group == "win":
            return self.with_boxes(win_box=other.win_box)
        if group == "lose":
            return self.with_boxes(lose_box=other.lose_box)
        raise KeyError(f"unknown calibration group: {group}")

    def group_boxes(self, group: str) -> Dict[str, List[RegionBox]]:
        if group == "battle_start":
            return {
                "vs": [self.vs_box],
                "my_party": list(self.my_party_boxes),
                "enemy_party": list(self.enemy_party_boxes),
            }
        if group == "party_select":
            return {"party_select": list(self.party_select_boxes)}
        if group == "win":
            return {"win": [self.win_box]}
        if group == "lose":
            return {"lose": [self.lose_box]}
        raise KeyError(f"unknown calibration group: {group}")

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "uiScale": float(self.ui_scale),
            "vsBox": self.vs_box.to_dict(),
            "myPartyBoxes": [b.to_dict() for b in self.my_party_boxes],
            "enemyPartyBoxes": [b.to_dict() for b in self.enemy_party_boxes],
            "partySelectBoxes": [b.to_dict() for b in self.party_select_boxes],
            "winBox": self.win_box.to_dict(),
            "loseBox": self.lose_box.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "CalibrationProfile":
        """Decode leniently; anything missing, malformed or of wrong cardinality keeps its default."""
        defaults = cls()
        if not isinstance(data, Mapping):
            return defaults

        def box_list(key: str, fallback: Tuple[RegionBox, ...]) -> Tuple[RegionBox, ...]:
            raw = data.get(key)
            if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)) or len(raw) != len(fallback):
                return fallback
            return tuple(RegionBox.from_dict(item, dflt) for item, dflt in zip(raw, fallback))

        try:
            ui_scale = float(data.get("uiScale", defaults.ui_scale))
        except (TypeError, ValueError):
            ui_scale = defaults.ui_scale
        if not ui_scale > 0:
            ui_scale = defaults.ui_scale

        return cls(
            ui_scale=ui_scale,
            vs_box=RegionBox.from_dict(data.get("vsBox"), defaults.vs_box),
            my_party_boxes=box_list("myPartyBoxes", defaults.my_party_boxes),
            enemy_party_boxes=box_list("enemyPartyBoxes", defaults.enemy_party_boxes),
            party_select_boxes=box_list("partySelectBoxes", defaults.party_select_boxes),
            win_box=RegionBox.from_dict(data.get("winBox"), defaults.win_box),
            lose_box=RegionBox.from_dict(data.get("loseBox"), defaults.lose_box),
        )


DEFAULT_PROFILE = CalibrationProfile()
