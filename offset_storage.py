"""
Per-game marquee placement: background/logo offsets and scales.

Stored as JSON keyed by system then game:

    {"snes": {"Zelda": {"off_x": 0, "off_y": 0, "logo_x": 4, "logo_y": -2,
                        "fanart_scale": 1.0, "logo_scale": 1.25}}}

The whole document is rewritten after every change.
"""
import json
import threading
from pathlib import Path
from typing import Dict, NamedTuple, Optional

from app_paths import get_offsets_path
from media_backend import _emit_log, ensure_dir


MIN_SCALE = 0.1
MAX_SCALE = 5.0

# Field names used by the older PascalCase document layout
_LEGACY_FIELDS = {
    "OffX": "off_x",
    "OffY": "off_y",
    "LogoX": "logo_x",
    "LogoY": "logo_y",
    "FanartScale": "fanart_scale",
    "LogoScale": "logo_scale",
}


class OffsetData(NamedTuple):
    off_x: int = 0
    off_y: int = 0
    logo_x: int = 0
    logo_y: int = 0
    fanart_scale: float = 1.0
    logo_scale: float = 1.0


DEFAULT_OFFSET = OffsetData()


def _clamp_scale(value: float) -> float:
    return max(MIN_SCALE, min(MAX_SCALE, value))


def _parse_game(raw: dict) -> dict:
    game = DEFAULT_OFFSET._asdict()
    for key, value in raw.items():
        field = _LEGACY_FIELDS.get(key, key)
        if field in game:
            game[field] = type(game[field])(value)
    game["fanart_scale"] = _clamp_scale(game["fanart_scale"])
    game["logo_scale"] = _clamp_scale(game["logo_scale"])
    return game


def _parse_document(doc, callbacks=None) -> Dict[str, Dict[str, dict]]:
    if not isinstance(doc, dict):
        raise ValueError("offsets document must be an object")
    offsets: Dict[str, Dict[str, dict]] = {}
    for system, games in doc.items():
        if not isinstance(games, dict):
            continue
        # Older files wrap each system's games in {"Games": {...}}
        if set(games) == {"Games"} and isinstance(games["Games"], dict):
            games = games["Games"]
        parsed = {}
        for game, raw in games.items():
            if not isinstance(raw, dict):
                continue
            try:
                parsed[game] = _parse_game(raw)
            except (TypeError, ValueError) as e:
                _emit_log(callbacks, f"[WARN] [OFFSET] Skipping bad offsets for {system}/{game}: {e}")
        offsets[system] = parsed
    return offsets


class OffsetStorage:
    def __init__(self, storage_path: Optional[Path] = None, callbacks=None):
        self.storage_path = Path(storage_path) if storage_path else get_offsets_path()
        self.callbacks = callbacks
        self._lock = threading.Lock()
        self._offsets: Dict[str, Dict[str, dict]] = {}
        self._load()

    def _load(self):
        if not self.storage_path.exists():
            return
        try:
            doc = json.loads(self.storage_path.read_text(encoding="utf-8"))
            self._offsets = _parse_document(doc, self.callbacks)
        except (OSError, ValueError, TypeError) as e:
            _emit_log(self.callbacks, f"[ERROR] Failed to load offsets from {self.storage_path}: {e}")
            self._offsets = {}

    def _save(self):
        # Caller holds the lock
        try:
            ensure_dir(self.storage_path.parent)
            self.storage_path.write_text(json.dumps(self._offsets, indent=2), encoding="utf-8")
        except OSError as e:
            _emit_log(self.callbacks, f"[ERROR] Failed to save offsets: {e}")

    def _game(self, system: str, game: str) -> dict:
        games = self._offsets.setdefault(system, {})
        if game not in games:
            games[game] = DEFAULT_OFFSET._asdict()
        return games[game]

    def get_offset(self, system: str, game: str) -> OffsetData:
        with self._lock:
            data = self._offsets.get(system, {}).get(game)
            if data is None:
                return DEFAULT_OFFSET
            return OffsetData(**data)

    def update_offset(self, system: str, game: str, dx: int, dy: int, is_logo: bool) -> OffsetData:
        with self._lock:
            data = self._game(system, game)
            if is_logo:
                data["logo_x"] += int(dx)
                data["logo_y"] += int(dy)
                _emit_log(self.callbacks, f"[OFFSET] Updated Logo Offset for {system}/{game}: {data['logo_x']}, {data['logo_y']}")
            else:
                data["off_x"] += int(dx)
                data["off_y"] += int(dy)
                _emit_log(self.callbacks, f"[OFFSET] Updated Background Offset for {system}/{game}: {data['off_x']}, {data['off_y']}")
            self._save()
            return OffsetData(**data)

    def update_scale(self, system: str, game: str, delta: float, is_logo: bool) -> OffsetData:
        with self._lock:
            data = self._game(system, game)
            field = "logo_scale" if is_logo else "fanart_scale"
            data[field] = _clamp_scale(data[field] + float(delta))
            label = "Logo" if is_logo else "Fanart"
            _emit_log(self.callbacks, f"[OFFSET] Updated {label} Scale for {system}/{game}: {data[field]:.2f}")
            self._save()
            return OffsetData(**data)
