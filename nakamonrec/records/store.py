from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import List, Optional

from nakamonrec.calibration.store import atomic_write_text
from nakamonrec.core.errors import PersistenceError

from .models import BattleHistory, BattleRecord


logger = logging.getLogger(__name__)

INVALID_NAME_CHARS = set('\\/:*?"<>|.')
DEFAULT_NAME = "default_record"


def validate_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValueError("history name must not be empty")
    bad = sorted(set(name) & INVALID_NAME_CHARS)
    if bad:
        raise ValueError(f"history name contains invalid characters: {''.join(bad)}")
    return name


class HistoryStore:
    """Named battle histories, one JSON document per name under ``<data_dir>/history``."""

    def __init__(self, data_dir: str | Path, name: str = DEFAULT_NAME) -> None:
        self.history_dir = Path(data_dir) / "history"
        self._lock = threading.RLock()
        self._name = validate_name(name)
        self._history = BattleHistory()

    # ------------------------------------------------------------------
    @property
    def name(self) -> str:
        with self._lock:
            return self._name

    @property
    def history(self) -> BattleHistory:
        with self._lock:
            return self._history.copy()

    def records(self) -> List[BattleRecord]:
        with self._lock:
            return list(self._history.records)

    def path_for(self, name: str) -> Path:
        return self.history_dir / f"{validate_name(name)}.json"

    def _read(self, path: Path) -> BattleHistory:
        if not path.exists():
            return BattleHistory()
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except OSError as exc:
            raise PersistenceError(f"cannot read history {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"history {path} is corrupt: {exc}") from exc
        return BattleHistory.from_dict(data)

    def _write(self, path: Path, history: BattleHistory) -> None:
        text = json.dumps(history.to_dict(), ensure_ascii=False, indent=2)
        try:
            atomic_write_text(path, text)
        except OSError as exc:
            raise PersistenceError(f"cannot write history {path}: {exc}") from exc

    # ------------------------------------------------------------------
    def load(self, name: Optional[str] = None) -> BattleHistory:
        """Switch to ``name`` (or reload the current one). Missing files read as empty."""
        with self._lock:
            target = validate_name(name) if name is not None else self._name
            history = self._read(self.path_for(target))
            self._name = target
            self._history = history
            logger.info("History %s loaded: %d records", target, len(history.records))
            return history.copy()

    def peek(self, name: str) -> BattleHistory:
        """Read another history without switching to it."""
        with self._lock:
            if validate_name(name) == self._name:
                return self._history.copy()
        path = self.path_for(name)
        if not path.exists():
            raise FileNotFoundError(f"no such history: {name}")
        return self._read(path)

    def append_record(self, record: BattleRecord) -> BattleHistory:
        """Append and persist. On write failure the in-memory append is rolled back."""
        with self._lock:
            updated = self._history.copy()
            updated.add(record)
            self._write(self.path_for(self._name), updated)
            self._history = updated
            logger.info(
                "Recorded %s (party=%d) -> %s [%d-%d]",
                record.result,
                record.party_index,
                self._name,
                updated.total_wins,
                updated.total_losses,
            )
            return updated.copy()

    def replace_record(self, index: int, record: BattleRecord) -> BattleHistory:
        with self._lock:
            updated = self._history.copy()
            if not 0 <= index < len(updated.records):
                raise IndexError(f"record index out of range: {index}")
            updated.records[index] = record
            updated.recount()
            self._write(self.path_for(self._name), updated)
            self._history = updated
            return updated.copy()

    def reset(self, name: Optional[str] = None) -> BattleHistory:
        with self._lock:
            target = validate_name(name) if name is not None else self._name
            self._write(self.path_for(target), BattleHistory())
            if target == self._name:
                self._history = BattleHistory()
            logger.info("History %s reset", target)
            return BattleHistory()

    # ------------------------------------------------------------------
    def list_names(self) -> List[str]:
        if not self.history_dir.exists():
            return []
        return sorted(p.stem for p in self.history_dir.glob("*.json"))

    def create(self, name: str) -> str:
        path = self.path_for(name)
        if path.exists():
            raise FileExistsError(f"history already exists: {name}")
        self._write(path, BattleHistory())
        return validate_name(name)

    def rename(self, old: str, new: str) -> str:
        src = self.path_for(old)
        dst = self.path_for(new)
        if not src.exists():
            raise FileNotFoundError(f"no such history: {old}")
        if dst.exists():
            raise FileExistsError(f"history already exists: {new}")
        with self._lock:
            try:
                os.replace(src, dst)
            except OSError as exc:
                raise PersistenceError(f"cannot rename history {old} -> {new}: {exc}") from exc
            if self._name == validate_name(old):
                self._name = validate_name(new)
        return validate_name(new)

    def delete(self, name: str) -> None:
        path = self.path_for(name)
        if not path.exists():
            raise FileNotFoundError(f"no such history: {name}")
        with self._lock:
            try:
                path.unlink()
            except OSError as exc:
                raise PersistenceError(f"cannot delete history {name}: {exc}") from exc
            if self._name == validate_name(name):
                self._history = BattleHistory()
