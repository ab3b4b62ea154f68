"""
Configuration for the marquee media resolver.

Settings live in config.yaml next to the application. The file is re-read
whenever it changes on disk so edits (for example the scraper priority
order) apply without restarting.

    paths:
      media_dir: ./media
      cache_dir: ./cache
      offsets_file: ./offsets.json
    scrapers:
      priority: [local, steamgriddb, arcadeitalia]
      arcadeitalia:
        base_url: http://adb.arcadeitalia.net
    monitor:
      process_name: emulationstation
"""
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from app_paths import get_config_path, resolve_path
from media_backend import _emit_log, load_yaml


DEFAULT_PRIORITY = ["local", "steamgriddb", "arcadeitalia"]

# Legacy source names with no provider here; dropped when migrating priority_source
RETIRED_SOURCES = {"screenscraper"}

DEFAULT_MONITOR = {
    "enabled": True,
    "process_name": "emulationstation",
    "check_interval_seconds": 30,
    "grace_period_seconds": 300,
    "initial_delay_seconds": 10,
}


def split_priority(value: Any) -> List[str]:
    """Accept a list or a comma separated string of scraper names."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(v) for v in value]
    return [item.strip() for item in items if item and item.strip()]


def migrate_legacy_scraper_config(cfg: dict) -> dict:
    """Migrate old priority layouts to the 'scrapers.priority' list."""
    scrapers_cfg = dict(cfg.get("scrapers", {}) or {})
    if "priority" in scrapers_cfg:
        return scrapers_cfg  # Already migrated

    # Providers list with per-entry enabled flag
    providers = scrapers_cfg.get("providers")
    if isinstance(providers, list):
        scrapers_cfg["priority"] = [
            str(p.get("id")) for p in providers
            if isinstance(p, dict) and p.get("id") and p.get("enabled", True)
        ]
        return scrapers_cfg

    # Flat 'priority_source: ScreenScraper, arcadeitalia' string
    if cfg.get("priority_source"):
        scrapers_cfg["priority"] = [
            name for name in split_priority(cfg["priority_source"])
            if name.lower() not in RETIRED_SOURCES
        ] or list(DEFAULT_PRIORITY)
        return scrapers_cfg

    scrapers_cfg["priority"] = list(DEFAULT_PRIORITY)
    return scrapers_cfg


class MarqueeConfig:
    def __init__(self, config_path: Optional[Path] = None, callbacks=None):
        self.config_path = Path(config_path) if config_path else get_config_path()
        self.callbacks = callbacks
        self._lock = threading.RLock()
        self._data: Dict[str, Any] = {}
        self._signature: Optional[Tuple[int, int]] = None
        self._missing_logged = False

    @property
    def base_dir(self) -> Path:
        return self.config_path.resolve().parent

    @property
    def data(self) -> dict:
        with self._lock:
            try:
                st = self.config_path.stat()
            except FileNotFoundError:
                if not self._missing_logged:
                    _emit_log(self.callbacks, f"[CONFIG] {self.config_path} not found, using defaults")
                    self._missing_logged = True
                self._data = {}
                self._signature = None
                return self._data
            except OSError as e:
                _emit_log(self.callbacks, f"[ERROR] Cannot stat config {self.config_path}: {e}")
                return self._data

            self._missing_logged = False
            signature = (st.st_mtime_ns, st.st_size)
            if signature == self._signature:
                return self._data

            self._signature = signature
            try:
                loaded = load_yaml(self.config_path)
                if not isinstance(loaded, dict):
                    raise ValueError("top level of config must be a mapping")
            except (OSError, yaml.YAMLError, ValueError) as e:
                _emit_log(self.callbacks, f"[ERROR] Failed to read config {self.config_path}: {e}. Keeping previous settings.")
                return self._data

            self._data = loaded
            _emit_log(self.callbacks, f"[CONFIG] Loaded {self.config_path}")
            return self._data

    # --------------------------
    # Scrapers
    # --------------------------
    @property
    def scraper_priorities(self) -> List[str]:
        scrapers_cfg = migrate_legacy_scraper_config(self.data)
        return split_priority(scrapers_cfg.get("priority"))

    def scraper_settings(self, name: str) -> dict:
        scrapers_cfg = self.data.get("scrapers", {}) or {}
        wanted = name.lower()
        for key, value in scrapers_cfg.items():
            if str(key).lower() == wanted and isinstance(value, dict):
                return value
        return {}

    def scraper_enabled(self, name: str) -> bool:
        return bool(self.scraper_settings(name).get("enabled", True))

    # --------------------------
    # Paths
    # --------------------------
    def _path_setting(self, key: str, default: str) -> Path:
        paths = self.data.get("paths", {}) or {}
        return resolve_path(paths.get(key, default), self.base_dir)

    @property
    def media_dir(self) -> Path:
        return self._path_setting("media_dir", "./media")

    @property
    def cache_dir(self) -> Path:
        return self._path_setting("cache_dir", "./cache")

    @property
    def offsets_path(self) -> Path:
        return self._path_setting("offsets_file", "./offsets.json")

    # --------------------------
    # Host process monitor
    # --------------------------
    @property
    def monitor_settings(self) -> dict:
        settings = dict(DEFAULT_MONITOR)
        settings.update(self.data.get("monitor", {}) or {})
        return settings
