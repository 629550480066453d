"""Battle history: records, JSON persistence and statistics."""
from .models import LOSE, UNKNOWN_MONSTER, WIN, BattleHistory, BattleRecord
from .store import HistoryStore, validate_name
from .stats import BattleStats, MonsterRank, PartyStat, get_statistics, monster_ranking, win_rate_series

__all__ = [
    "LOSE",
    "UNKNOWN_MONSTER",
    "WIN",
    "BattleHistory",
    "BattleRecord",
    "HistoryStore",
    "validate_name",
    "BattleStats",
    "MonsterRank",
    "PartyStat",
    "get_statistics",
    "monster_ranking",
    "win_rate_series",
]
