"""Scene classification and the Idle / InBattle state machine.

Frames arrive on the analysis worker via ``handle_frame``. Entering a battle
opens a session and kicks off a bounded series of slot identification passes
on the identify worker. Each pass matches outside the lock and commits only
if its session is still the current one, so passes from an ended session can
never write into a later battle.
"""
from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from nakamonrec.calibration.profile import CalibrationProfile
from nakamonrec.core.errors import PersistenceError
from nakamonrec.core.session import DiagnosticsRecorder
from nakamonrec.core.timeline import Timeline
from nakamonrec.records.models import UNKNOWN_MONSTER, BattleRecord

from .analyzer import BattleAnalyzer
from .scheduling import FrameSlot


logger = logging.getLogger(__name__)

IDLE = "idle"
IN_BATTLE = "in_battle"
SLOT_COUNT = 8
NO_SESSION = 0


class SlotState:
    """Names bound to the eight slots of one session. Bound slots never change."""

    def __init__(self, session_id: int) -> None:
        self.session_id = session_id
        self._names: List[Optional[str]] = [None] * SLOT_COUNT

    def bind(self, index: int, name: str) -> bool:
        if self._names[index] is not None:
            return False
        self._names[index] = name
        return True

    def pending(self) -> List[int]:
        return [i for i, n in enumerate(self._names) if n is None]

    def complete(self) -> bool:
        return all(n is not None for n in self._names)

    def names(self) -> List[Optional[str]]:
        return list(self._names)

    def parties(self) -> Tuple[List[str], List[str]]:
        filled = [n or UNKNOWN_MONSTER for n in self._names]
        return filled[:4], filled[4:]


class BattleStateMachine:
    def __init__(
        self,
        analyzer: BattleAnalyzer,
        frames: FrameSlot,
        scheduler: Any,
        *,
        on_record: Callable[[BattleRecord], Any],
        scan_passes: int = 40,
        scan_interval_s: float = 0.05,
        timeline: Optional[Timeline] = None,
        diagnostics: Optional[DiagnosticsRecorder] = None,
    ) -> None:
        self.analyzer = analyzer
        self.frames = frames
        self.scheduler = scheduler
        self.on_record = on_record
        self.scan_passes = scan_passes
        self.scan_interval_s = scan_interval_s
        self.timeline = timeline or Timeline()
        self.diagnostics = diagnostics

        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._state = IDLE
        self._session_id = NO_SESSION
        self._slots = SlotState(NO_SESSION)
        self._selected_party = -1
        self._snapshot_taken = False
        self._pending_profile: Optional[CalibrationProfile] = None
        self._last_record: Optional[BattleRecord] = None
        self._last_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    @property
    def session_id(self) -> int:
        with self._lock:
            return self._session_id

    @property
    def selected_party(self) -> int:
        with self._lock:
            return self._selected_party

    @property
    def last_record(self) -> Optional[BattleRecord]:
        with self._lock:
            return self._last_record

    def slot_names(self) -> List[str]:
        """Ally then enemy names; unresolved slots read as the unknown placeholder."""
        with self._lock:
            my_party, enemy_party = self._slots.parties()
        return my_party + enemy_party

    def is_session_complete(self) -> bool:
        with self._lock:
            return self._slots.complete()

    def to_status(self) -> Dict[str, Any]:
        with self._lock:
            my_party, enemy_party = self._slots.parties()
            return {
                "state": self._state,
                "session_id": self._session_id,
                "selected_party": self._selected_party,
                "my_party": my_party,
                "enemy_party": enemy_party,
                "session_complete": self._slots.complete(),
                "last_result": self._last_record.to_dict() if self._last_record else None,
                "last_error": self._last_error,
            }

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------
    def request_profile(self, profile: CalibrationProfile) -> None:
        """Queue a profile; it is applied at the next Idle evaluation."""
        with self._lock:
            self._pending_profile = profile

    def invalidate(self) -> None:
        """Drop the active session so in-flight passes become no-ops."""
        with self._lock:
            if self._session_id != NO_SESSION:
                logger.info("Session %d invalidated", self._session_id)
            self._session_id = NO_SESSION
            self._state = IDLE

    def _apply_pending_profile(self) -> None:
        with self._lock:
            profile, self._pending_profile = self._pending_profile, None
        if profile is not None:
            self.analyzer.set_profile(profile)
            self.timeline.add(IDLE, "calibration", "profile_applied", ui_scale=profile.ui_scale)

    # ------------------------------------------------------------------
    # Analysis worker
    # ------------------------------------------------------------------
    def handle_frame(self, frame: np.ndarray) -> None:
        if self.state == IDLE:
            self._evaluate_idle(frame)
        else:
            self._evaluate_battle(frame)

    def _evaluate_idle(self, frame: np.ndarray) -> None:
        self._apply_pending_profile()
        party = self.analyzer.detect_selected_party(frame)
        if party != -1:
            with self._lock:
                changed = party != self._selected_party
                self._selected_party = party
            if changed:
                self.timeline.add(IDLE, "detect", "party_selected", party=party)
        if not self.analyzer.is_vs_detected(frame):
            return
        with self._lock:
            sid = next(self._ids)
            self._session_id = sid
            self._slots = SlotState(sid)
            self._state = IN_BATTLE
            self._snapshot_taken = False
            party = self._selected_party
        logger.info("Battle started | session=%d party=%d", sid, party)
        self.timeline.add(IN_BATTLE, "transition", "battle_start", session=sid, party=party)
        self.scheduler.schedule(0.0, self.run_pass, sid, self.scan_passes)

    def _evaluate_battle(self, frame: np.ndarray) -> None:
        result = self.analyzer.check_battle_result(frame)
        if result is None:
            return
        with self._lock:
            if self._state != IN_BATTLE:
                return
            sid = self._session_id
            slots = self._slots
            my_party, enemy_party = slots.parties()
            complete = slots.complete()
            party = self._selected_party
            self._session_id = NO_SESSION
            self._state = IDLE
        if not complete:
            self._snapshot(sid, slots, "battle_end_incomplete")
        record = BattleRecord.create(result, party, my_party, enemy_party)
        with self._lock:
            self._last_record = record
        logger.info("Battle finished | session=%d result=%s my=%s enemy=%s", sid, result, my_party, enemy_party)
        self.timeline.add(IDLE, "result", result, session=sid, my_party=my_party, enemy_party=enemy_party)
        try:
            self.on_record(record)
        except PersistenceError as exc:
            logger.exception("Battle record not persisted | session=%d", sid)
            with self._lock:
                self._last_error = str(exc)
            self.timeline.add(IDLE, "error", "persist_failed", session=sid, error=str(exc))

    # ------------------------------------------------------------------
    # Identify worker
    # ------------------------------------------------------------------
    def run_pass(self, session_id: int, remaining: int) -> None:
        with self._lock:
            if session_id != self._session_id:
                return
            slots = self._slots
            if slots.complete():
                return
            pending = slots.pending()
        if remaining <= 0:
            self._snapshot(session_id, slots, "identify_window_expired")
            return

        frame = self.frames.snapshot()
        if frame is not None:
            found = self.analyzer.identify_slots(frame, pending)
            with self._lock:
                if session_id != self._session_id:
                    return
                for idx, (name, score) in sorted(found.items()):
                    if slots.bind(idx, name):
                        logger.info("Slot %d identified as %s (%.3f) | session=%d", idx, name, score, session_id)
                        self.timeline.add(IN_BATTLE, "identify", name, session=session_id, slot=idx, score=round(score, 3))
                done = slots.complete()
            if done:
                logger.info("All slots identified | session=%d passes_left=%d", session_id, remaining - 1)
                return
        self.scheduler.schedule(self.scan_interval_s, self.run_pass, session_id, remaining - 1)

    def _snapshot(self, session_id: int, slots: SlotState, reason: str) -> None:
        with self._lock:
            if self._snapshot_taken or self.diagnostics is None:
                return
            self._snapshot_taken = True
        frame = self.frames.snapshot()
        if frame is None:
            return
        self.diagnostics.save_frame(
            frame,
            reason,
            {"session": session_id, "reason": reason, "slots": slots.names()},
        )
