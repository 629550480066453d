"""Runtime: frame hand-off, workers, the battle state machine and the recorder service."""
from .scheduling import FrameSlot, PassScheduler, RateLimiter
from .analyzer import BattleAnalyzer
from .machine import IDLE, IN_BATTLE, BattleStateMachine, SlotState
from .service import RecorderRuntime, RecorderStatus

__all__ = [
    "FrameSlot",
    "PassScheduler",
    "RateLimiter",
    "BattleAnalyzer",
    "IDLE",
    "IN_BATTLE",
    "BattleStateMachine",
    "SlotState",
    "RecorderRuntime",
    "RecorderStatus",
]
