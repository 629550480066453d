"""Configuration loader with YAML files and environment variable overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml


ENV_PREFIX = "NAKAMON"


class Config:
    """Configuration loader with environment variable override support."""

    def __init__(self, config_dir: Optional[str | Path] = None):
        """Initialize config loader.

        Args:
            config_dir: Path to config directory. Defaults to $NAKAMON_CONFIG_DIR,
                then 'config' relative to project root.
        """
        if config_dir is None:
            config_dir = os.environ.get(f"{ENV_PREFIX}_CONFIG_DIR")
        if config_dir is None:
            # Find config directory relative to this file
            current_dir = Path(__file__).parent.parent.parent
            config_dir = current_dir / "config"

        self.config_dir = Path(config_dir)
        self._cache: Dict[str, Any] = {}

    def load_profile(self) -> Dict[str, Any]:
        """Load profile configuration with environment overrides."""
        return self._load_config("profile.yml")

    def _load_config(self, config_path: str) -> Dict[str, Any]:
        """Load a YAML config file with environment variable overrides."""
        full_path = self.config_dir / config_path

        cache_key = str(full_path)
        if cache_key in self._cache:
            return self._cache[cache_key].copy()

        config: Dict[str, Any] = {}

        if full_path.exists():
            try:
                with open(full_path, "r", encoding="utf-8") as f:
                    config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError):
                # If YAML loading fails, continue with empty config
                config = {}
        if not isinstance(config, dict):
            config = {}

        config = self._apply_env_overrides(config, config_path)

        self._cache[cache_key] = config.copy()
        return config

    def _apply_env_overrides(self, config: Dict[str, Any], config_path: str) -> Dict[str, Any]:
        """Apply NAKAMON_<FILE>_<KEY> environment overrides to existing keys."""
        config_name = Path(config_path).stem.upper()
        env_prefix = f"{ENV_PREFIX}_{config_name}_"

        def apply_overrides(obj: Any, path: str = "") -> Any:
            if not isinstance(obj, dict):
                return obj
            result = {}
            for key, value in obj.items():
                new_path = f"{path}.{key}" if path else str(key)
                env_key = f"{env_prefix}{new_path.replace('.', '_').upper()}"
                env_value = os.environ.get(env_key)

                if env_value is None:
                    result[key] = apply_overrides(value, new_path)
                elif isinstance(value, bool):
                    result[key] = env_value.lower() in ("true", "1", "yes", "on")
                elif isinstance(value, int):
                    try:
                        result[key] = int(env_value)
                    except ValueError:
                        result[key] = value
                elif isinstance(value, float):
                    try:
                        result[key] = float(env_value)
                    except ValueError:
                        result[key] = value
                else:
                    result[key] = env_value
            return result

        return apply_overrides(config)

    def clear_cache(self):
        """Clear the configuration cache."""
        self._cache.clear()


def _section(profile: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = profile.get(name)
    return value if isinstance(value, dict) else {}


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class Thresholds:
    vs: float = 0.7
    win: float = 0.5
    lose: float = 0.5
    monster: float = 0.7
    party: float = 0.45


@dataclass
class RecorderSettings:
    assets_dir: str = "assets"
    data_dir: str = "data"
    history_name: str = "default_record"
    calibration_path: str = "data/calibration.yml"
    log_dir: str = "logs"
    log_level: str = "INFO"
    capture_monitor: int = 1
    capture_region: Optional[Tuple[int, int, int, int]] = None
    capture_poll_interval_s: float = 0.05
    analysis_interval_s: float = 0.5
    scan_passes: int = 40
    scan_interval_s: float = 0.05
    diagnostics_enabled: bool = True
    diagnostics_dir: str = "logs/diagnostics"
    thresholds: Thresholds = field(default_factory=Thresholds)

    @classmethod
    def from_profile(cls, profile: Optional[Dict[str, Any]]) -> "RecorderSettings":
        profile = profile or {}
        s = cls()
        s.assets_dir = str(profile.get("assets_dir") or s.assets_dir)
        s.data_dir = str(profile.get("data_dir") or s.data_dir)
        s.history_name = str(profile.get("history_name") or s.history_name)
        s.calibration_path = str(profile.get("calibration_path") or os.path.join(s.data_dir, "calibration.yml"))
        s.log_dir = str(profile.get("log_dir") or s.log_dir)
        s.log_level = str(profile.get("log_level") or s.log_level)

        capture = _section(profile, "capture")
        s.capture_monitor = _as_int(capture.get("monitor"), s.capture_monitor)
        region = capture.get("region")
        if isinstance(region, (list, tuple)) and len(region) == 4:
            try:
                s.capture_region = tuple(int(v) for v in region)  # type: ignore[assignment]
            except (TypeError, ValueError):
                s.capture_region = None
        s.capture_poll_interval_s = _as_float(capture.get("poll_interval_s"), s.capture_poll_interval_s)

        analysis = _section(profile, "analysis")
        s.analysis_interval_s = _as_float(analysis.get("interval_ms"), s.analysis_interval_s * 1000.0) / 1000.0
        s.scan_passes = _as_int(analysis.get("scan_passes"), s.scan_passes)
        s.scan_interval_s = _as_float(analysis.get("scan_interval_ms"), s.scan_interval_s * 1000.0) / 1000.0

        thr = _section(profile, "thresholds")
        defaults = Thresholds()
        s.thresholds = Thresholds(
            vs=_as_float(thr.get("vs"), defaults.vs),
            win=_as_float(thr.get("win"), defaults.win),
            lose=_as_float(thr.get("lose"), defaults.lose),
            monster=_as_float(thr.get("monster"), defaults.monster),
            party=_as_float(thr.get("party"), defaults.party),
        )

        diag = _section(profile, "diagnostics")
        enabled = diag.get("enabled")
        if isinstance(enabled, bool):
            s.diagnostics_enabled = enabled
        s.diagnostics_dir = str(diag.get("dir") or s.diagnostics_dir)
        return s


_config_instance: Optional[Config] = None


def get_config() -> Config:
    """Get the shared config loader."""
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance


def load_profile() -> Dict[str, Any]:
    """Convenience function to load profile config."""
    return get_config().load_profile()


def load_settings() -> RecorderSettings:
    """Load the profile and convert it to typed settings."""
    return RecorderSettings.from_profile(load_profile())
