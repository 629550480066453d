"""Aggregate statistics over battle records.

Rates are computed from exact counts with ``Fraction`` and converted to
percentages only at the edge, so per-party usage rates add up to 100.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass
from fractions import Fraction
from typing import Any, Dict, Iterable, List, Sequence

from .models import UNKNOWN_MONSTER, BattleRecord


PARTY_COUNT = 3
RANK_SORTS = ("count", "win_rate")


def percent(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return float(Fraction(part, whole) * 100)


@dataclass(frozen=True)
class PartyStat:
    index: int
    battles: int
    wins: int
    losses: int
    win_rate: float
    usage_rate: float


@dataclass(frozen=True)
class BattleStats:
    total_battles: int
    total_wins: int
    total_losses: int
    win_rate: float
    parties: List[PartyStat]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MonsterRank:
    name: str
    count: int
    wins: int
    appearance_rate: float
    win_rate: float


def get_statistics(records: Sequence[BattleRecord]) -> BattleStats:
    total = len(records)
    wins = sum(1 for r in records if r.won)
    parties: List[PartyStat] = []
    for idx in range(PARTY_COUNT):
        used = [r for r in records if r.party_index == idx]
        p_wins = sum(1 for r in used if r.won)
        parties.append(
            PartyStat(
                index=idx,
                battles=len(used),
                wins=p_wins,
                losses=len(used) - p_wins,
                win_rate=percent(p_wins, len(used)),
                usage_rate=percent(len(used), total),
            )
        )
    return BattleStats(total, wins, total - wins, percent(wins, total), parties)


def monster_ranking(records: Sequence[BattleRecord], sort: str = "count") -> List[MonsterRank]:
    """Enemy monsters by appearance. Each monster counts once per battle; placeholders are skipped."""
    if sort not in RANK_SORTS:
        raise ValueError(f"sort must be one of {RANK_SORTS}, got {sort!r}")
    seen: Counter = Counter()
    won: Counter = Counter()
    for record in records:
        for name in set(record.enemy_party):
            if not name or name == UNKNOWN_MONSTER:
                continue
            seen[name] += 1
            if record.won:
                won[name] += 1
    total = len(records)
    ranks = [
        MonsterRank(name, count, won[name], percent(count, total), percent(won[name], count))
        for name, count in seen.items()
    ]
    if sort == "win_rate":
        # hardest opponents first
        ranks.sort(key=lambda r: (r.win_rate, -r.count, r.name))
    else:
        ranks.sort(key=lambda r: (-r.count, -r.win_rate, r.name))
    return ranks


def win_rate_series(records: Iterable[BattleRecord]) -> List[float]:
    """Cumulative win rate (percent) after each battle, in record order."""
    series: List[float] = []
    wins = 0
    for n, record in enumerate(records, start=1):
        if record.won:
            wins += 1
        series.append(percent(wins, n))
    return series
