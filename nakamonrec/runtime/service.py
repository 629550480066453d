from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

import cv2
import numpy as np

from nakamonrec.calibration import CalibrationManager, CalibrationProfile, CalibrationProposal, CalibrationStore
from nakamonrec.core.config import RecorderSettings, load_settings
from nakamonrec.core.errors import PersistenceError
from nakamonrec.core.logging import init_logging
from nakamonrec.core.session import DiagnosticsRecorder
from nakamonrec.core.timeline import Timeline
from nakamonrec.platform.capture import ScreenSource
from nakamonrec.records import UNKNOWN_MONSTER, BattleHistory, BattleRecord, HistoryStore
from nakamonrec.vision.cache import ScaledTemplateCache
from nakamonrec.vision.templates import TemplateStore

from .analyzer import BattleAnalyzer
from .machine import IDLE, BattleStateMachine
from .scheduling import FrameSlot, PassScheduler, RateLimiter


PREVIEW_MAX_WIDTH = 480


@dataclass
class RecorderStatus:
    running: bool = False
    state: str = IDLE
    session_id: int = 0
    selected_party: int = -1
    my_party: List[str] = field(default_factory=lambda: [UNKNOWN_MONSTER] * 4)
    enemy_party: List[str] = field(default_factory=lambda: [UNKNOWN_MONSTER] * 4)
    session_complete: bool = False
    last_result: Optional[Dict[str, Any]] = None
    history_name: str = ""
    total_wins: int = 0
    total_losses: int = 0
    ui_scale: float = 1.0
    frames_seen: int = 0
    frames_analyzed: int = 0
    frames_skipped: int = 0
    last_error: Optional[str] = None
    last_frame: Optional[bytes] = None  # JPEG bytes for preview

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in self.__dict__.items() if k != "last_frame"}
        data["has_preview"] = self.last_frame is not None
        return data


class RecorderRuntime:
    """Capture thread -> frame slot -> rate-limited analysis worker -> state machine."""

    def __init__(self, settings: Optional[RecorderSettings] = None) -> None:
        self.settings = settings or load_settings()
        s = self.settings
        self.logger = init_logging(s.log_dir, s.log_level)

        self.templates = TemplateStore(s.assets_dir)
        self.cache = ScaledTemplateCache(self.templates)
        self.analyzer = BattleAnalyzer(self.cache, s.thresholds)
        self.calibration = CalibrationManager(self.templates, CalibrationStore(s.calibration_path))
        self.history = HistoryStore(s.data_dir, s.history_name)
        self.frames = FrameSlot()
        self.limiter = RateLimiter(s.analysis_interval_s)
        self.timeline = Timeline()
        self.diagnostics = DiagnosticsRecorder(s.diagnostics_dir, s.diagnostics_enabled)
        self.status = RecorderStatus(history_name=self.history.name)

        self._lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None
        self._stop_evt = threading.Event()
        self._source: Any = None
        self._analysis: Optional[PassScheduler] = None
        self._identify: Optional[PassScheduler] = None
        self._analysis_busy = threading.Event()
        self._assets_loaded = False
        self.machine: Optional[BattleStateMachine] = None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def ensure_assets(self) -> None:
        """Decode templates once; a broken catalog raises AssetLoadError."""
        with self._lock:
            if self._assets_loaded:
                return
            self.templates.load()
            self._assets_loaded = True

    def reload_calibration(self) -> CalibrationProfile:
        try:
            profile = self.calibration.load()
        except PersistenceError as exc:
            self.logger.exception("Calibration reload failed; keeping current profile")
            self.timeline.add(self.status.state, "error", "calibration_load_failed", error=str(exc))
            raise
        self._apply_profile(profile)
        return profile

    def _apply_profile(self, profile: CalibrationProfile) -> None:
        with self._lock:
            machine = self.machine
            self.status.ui_scale = profile.ui_scale
        if machine is not None:
            machine.request_profile(profile)
        else:
            self.analyzer.set_profile(profile)
        self.timeline.add(self.status.state, "calibration", "profile_loaded", ui_scale=profile.ui_scale)

    def reload_history(self, name: Optional[str] = None) -> BattleHistory:
        history = self.history.load(name)
        with self._lock:
            self.status.history_name = self.history.name
            self.status.total_wins = history.total_wins
            self.status.total_losses = history.total_losses
        return history

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self, source: Any = None) -> None:
        with self._lock:
            if self.status.running:
                return
            self.ensure_assets()
            try:
                profile = self.calibration.load()
            except PersistenceError:
                self.logger.exception("Calibration unreadable; using current profile")
                profile = self.calibration.profile
            self.reload_history(self.history.name)

            self._analysis = PassScheduler("analysis")
            self._identify = PassScheduler("identify")
            self._analysis_busy.clear()
            self.limiter.reset()
            self.machine = BattleStateMachine(
                self.analyzer,
                self.frames,
                self._identify,
                on_record=self._commit_record,
                scan_passes=self.settings.scan_passes,
                scan_interval_s=self.settings.scan_interval_s,
                timeline=self.timeline,
                diagnostics=self.diagnostics,
            )
            self.cache.clear()
            self.analyzer.set_profile(profile)
            self.status.ui_scale = profile.ui_scale

            self._source = source or ScreenSource(self.settings.capture_monitor, self.settings.capture_region)
            self._stop_evt.clear()
            self.status.running = True
            self.status.last_error = None
            self._thread = threading.Thread(target=self._run_loop, name="capture", daemon=True)
            self._thread.start()
            self.timeline.add(IDLE, "info", "runtime_started")
            self.logger.info(
                "Runtime started | source=%s history=%s ui_scale=%.3f",
                type(self._source).__name__,
                self.history.name,
                profile.ui_scale,
            )

    def stop(self) -> None:
        with self._lock:
            if not self.status.running:
                return
            self._stop_evt.set()
            thread = self._thread
            workers = (self._analysis, self._identify)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5.0)
        # workers take the runtime lock, so shut them down without holding it
        for worker in workers:
            if worker is not None:
                worker.shutdown(wait=True)
        with self._lock:
            if self._source is not None:
                try:
                    self._source.close()
                except Exception:
                    self.logger.exception("capture source close failed")
            if self.machine is not None:
                self.machine.invalidate()
            self.cache.clear()
            self.templates.release()
            self._assets_loaded = False
            self.frames.clear()
            self._thread = None
            self._source = None
            self._analysis = None
            self._identify = None
            self.status.running = False
            self.timeline.add(IDLE, "info", "runtime_stopped")
            self.logger.info("Runtime stopped")

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the capture thread (e.g. a replay source running dry)."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _run_loop(self) -> None:
        poll = self.settings.capture_poll_interval_s
        while not self._stop_evt.is_set():
            try:
                frame = self._source.read()
            except Exception as e:
                with self._lock:
                    self.status.last_error = f"capture: {e}"
                self.logger.exception("capture error")
                self._stop_evt.wait(0.5)
                continue
            if frame is None:
                if getattr(self._source, "exhausted", False):
                    self.logger.info("Capture source exhausted")
                    break
            else:
                self.offer_frame(frame)
            self._stop_evt.wait(poll)

    # ------------------------------------------------------------------
    # Frame path
    # ------------------------------------------------------------------
    def offer_frame(self, frame: np.ndarray) -> bool:
        """Publish ``frame``; returns True if it was handed to the analysis worker."""
        self.frames.put(frame)
        with self._lock:
            self.status.frames_seen += 1
            analysis = self._analysis
        if analysis is None or not self.limiter.ready():
            return False
        if self._analysis_busy.is_set():
            with self._lock:
                self.status.frames_skipped += 1
            return False
        snapshot = self.frames.snapshot()
        if snapshot is None:
            return False
        self._analysis_busy.set()
        if analysis.schedule(0.0, self._analyze, snapshot) is None:
            self._analysis_busy.clear()
            return False
        return True

    def _analyze(self, frame: np.ndarray) -> None:
        try:
            machine = self.machine
            if machine is not None:
                machine.handle_frame(frame)
            preview = self._encode_preview(frame)
            with self._lock:
                self.status.frames_analyzed += 1
                if preview is not None:
                    self.status.last_frame = preview
        except Exception as e:
            with self._lock:
                self.status.last_error = f"analysis: {e}"
            self.logger.exception("analysis error")
        finally:
            self._analysis_busy.clear()

    @staticmethod
    def _encode_preview(frame: np.ndarray) -> Optional[bytes]:
        h, w = frame.shape[:2]
        if w > PREVIEW_MAX_WIDTH:
            ratio = PREVIEW_MAX_WIDTH / float(w)
            frame = cv2.resize(frame, (PREVIEW_MAX_WIDTH, max(1, int(h * ratio))), interpolation=cv2.INTER_AREA)
        ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), 80])
        return buf.tobytes() if ok else None

    def _commit_record(self, record: BattleRecord) -> None:
        history = self.history.append_record(record)
        with self._lock:
            self.status.total_wins = history.total_wins
            self.status.total_losses = history.total_losses

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------
    def propose_calibration(self, group: str, frame: Optional[np.ndarray] = None) -> CalibrationProposal:
        self.ensure_assets()
        if frame is None:
            frame = self.frames.snapshot()
        try:
            proposal = self.calibration.propose(group, frame)
        except Exception as exc:
            self.timeline.add(self.status.state, "calibration", f"{group}_failed", error=str(exc))
            raise
        self.timeline.add(self.status.state, "calibration", f"{group}_proposed", score=round(proposal.score, 3))
        return proposal

    def accept_calibration(self, group: str) -> CalibrationProfile:
        profile = self.calibration.accept(group)
        self._apply_profile(profile)
        return profile

    def set_calibration_group(self, group: str, boxes: Dict[str, Any], ui_scale: Optional[float] = None) -> CalibrationProfile:
        profile = self.calibration.set_group(group, boxes, ui_scale=ui_scale)
        self._apply_profile(profile)
        return profile

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def classify(self, frame: np.ndarray) -> Dict[str, Any]:
        """One-shot classification of a single screenshot with the live profile."""
        self.ensure_assets()
        self.analyzer.set_profile(self.calibration.profile)
        pending = range(len(self.analyzer.profile.slot_boxes))
        slots = self.analyzer.identify_slots(frame, pending)
        return {
            "selected_party": self.analyzer.detect_selected_party(frame),
            "vs": self.analyzer.is_vs_detected(frame),
            "result": self.analyzer.check_battle_result(frame),
            "slots": {idx: {"name": name, "score": round(score, 4)} for idx, (name, score) in sorted(slots.items())},
        }

    def latest_frame(self) -> Optional[np.ndarray]:
        return self.frames.snapshot()

    def snapshot(self) -> RecorderStatus:
        with self._lock:
            status = replace(self.status)
            machine = self.machine
        if machine is not None:
            info = machine.to_status()
            status.state = info["state"]
            status.session_id = info["session_id"]
            status.selected_party = info["selected_party"]
            status.my_party = info["my_party"]
            status.enemy_party = info["enemy_party"]
            status.session_complete = info["session_complete"]
            status.last_result = info["last_result"]
            status.last_error = info["last_error"] or status.last_error
        return status

    def get_timeline(self, n: int = 50) -> List[Dict[str, Any]]:
        return self.timeline.last(n)
