from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple


WIN = "WIN"
LOSE = "LOSE"
RESULTS = (WIN, LOSE)
UNKNOWN_MONSTER = "?"
NO_PARTY = -1
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def _names(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        return ()
    return tuple(str(v) for v in value)


@dataclass(frozen=True)
class BattleRecord:
    timestamp: str
    result: str
    party_index: int
    my_party: Tuple[str, ...]
    enemy_party: Tuple[str, ...]

    def __post_init__(self) -> None:
        if self.result not in RESULTS:
            raise ValueError(f"result must be WIN or LOSE, got {self.result!r}")
        if not NO_PARTY <= self.party_index <= 2:
            raise ValueError(f"party_index out of range: {self.party_index}")

    @property
    def won(self) -> bool:
        return self.result == WIN

    @classmethod
    def create(
        cls,
        result: str,
        party_index: int,
        my_party: Sequence[Optional[str]],
        enemy_party: Sequence[Optional[str]],
        now: Optional[datetime] = None,
    ) -> "BattleRecord":
        stamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
        return cls(
            stamp,
            result,
            party_index,
            tuple(n or UNKNOWN_MONSTER for n in my_party),
            tuple(n or UNKNOWN_MONSTER for n in enemy_party),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "result": self.result,
            "partyIndex": self.party_index,
            "myParty": list(self.my_party),
            "enemyParty": list(self.enemy_party),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BattleRecord":
        try:
            party_index = int(data.get("partyIndex", NO_PARTY))
        except (TypeError, ValueError):
            party_index = NO_PARTY
        if not NO_PARTY <= party_index <= 2:
            party_index = NO_PARTY
        return cls(
            str(data.get("timestamp", "")),
            str(data.get("result", "")).upper(),
            party_index,
            _names(data.get("myParty")),
            _names(data.get("enemyParty")),
        )


@dataclass
class BattleHistory:
    total_wins: int = 0
    total_losses: int = 0
    records: List[BattleRecord] = field(default_factory=list)

    def add(self, record: BattleRecord) -> None:
        self.records.append(record)
        if record.won:
            self.total_wins += 1
        else:
            self.total_losses += 1

    def recount(self) -> None:
        self.total_wins = sum(1 for r in self.records if r.won)
        self.total_losses = len(self.records) - self.total_wins

    def copy(self) -> "BattleHistory":
        return BattleHistory(self.total_wins, self.total_losses, list(self.records))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalWins": self.total_wins,
            "totalLosses": self.total_losses,
            "records": [r.to_dict() for r in self.records],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "BattleHistory":
        """Tolerant decode: unknown or broken records are dropped, totals always derived from the kept records."""
        if not isinstance(data, Mapping):
            return cls()
        records: List[BattleRecord] = []
        raw = data.get("records")
        if isinstance(raw, list):
            for item in raw:
                if not isinstance(item, Mapping):
                    continue
                try:
                    records.append(BattleRecord.from_dict(item))
                except ValueError:
                    continue
        history = cls(records=records)
        history.recount()
        return history
