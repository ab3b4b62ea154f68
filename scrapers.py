"""
Media sources for the scraper manager.

local         - artwork already present in the media folder (synchronous)
arcadeitalia  - arcade marquees/snaps from adb.arcadeitalia.net (background)
steamgriddb   - heroes (fanart) and logos from SteamGridDB (background)
"""
import os
import json
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple

import requests

from game_names import rom_stem
from media_backend import (
    CancelToken,
    _emit_log,
    choose_game_id,
    download_image,
    ensure_dir,
    images_by_game,
    is_cancelled,
    pick_best_image,
    read_json_list,
    safe_slug,
    save_png,
    search_with_variants,
    sha256_text,
)
from scraper_manager import ScraperService


IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")

RequestKey = Tuple[str, str, str]


def request_key(system: str, game: str, media_type: str) -> RequestKey:
    return (system.strip().lower(), game.strip(), media_type.strip().lower())


def cache_stem(name: str) -> str:
    """File-safe stem for a cache file; names with no usable characters fall back to a hash."""
    return safe_slug(name) or sha256_text(name)[:16]


# ==========================
# Local media folder
# ==========================
class LocalMediaScraper(ScraperService):
    """Looks up artwork that already exists under the media folder."""

    name = "local"

    def __init__(self, media_dir: Path, callbacks=None):
        super().__init__(callbacks)
        self.media_dir = Path(media_dir)

    def _candidates(self, system: str, game: str, game_path: str, media_type: str) -> List[Path]:
        system_dir = self.media_dir / system
        stems = []
        for stem in (rom_stem(game_path), game):
            if stem and stem not in stems:
                stems.append(stem)

        candidates = []
        for stem in stems:
            for ext in IMAGE_EXTENSIONS:
                candidates.append(system_dir / f"{stem}-{media_type}{ext}")
            for ext in IMAGE_EXTENSIONS:
                candidates.append(system_dir / media_type / f"{stem}{ext}")
        return candidates

    def check_and_scrape(self, system, game, game_path, media_type, cancel=None):
        for candidate in self._candidates(system, game, game_path, media_type):
            if candidate.is_file():
                return str(candidate)
        return None


# ==========================
# Background scraper base
# ==========================
class BackgroundScraper(ScraperService):
    """
    Shared bookkeeping for sources that download in the background.

    A request is recorded as pending before its job is submitted, and
    removed from pending before the completion event is emitted, so a
    listener reacting to the event never sees the source as still busy.
    Keys that came back empty go into a negative cache persisted as JSON.
    """

    def __init__(self, cache_dir: Path, threads: int = 1, callbacks=None):
        super().__init__(callbacks)
        self.cache_dir = Path(cache_dir)
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(threads)), thread_name_prefix=f"scraper-{self.name}")
        self._pending: Dict[RequestKey, Future] = {}
        self._pending_lock = threading.Lock()
        self._failed: Set[str] = set()
        self._failed_lock = threading.Lock()
        self._failed_path = self.cache_dir / "_cache" / f"{self.name}_failed.json"
        self._load_failed()

    # --------------------------
    # To implement per source
    # --------------------------
    def supports(self, system: str, media_type: str) -> bool:
        return True

    def cache_path(self, system: str, game: str, game_path: str, media_type: str) -> Path:
        stem = cache_stem(rom_stem(game_path) or game)
        return self.cache_dir / self.name / cache_stem(system) / f"{stem}_{media_type.lower()}.png"

    def fetch(self, system: str, game: str, game_path: str, media_type: str,
              target: Path, cancel: Optional[CancelToken]) -> bool:
        """Download the media into target. Returns False when the source has none."""
        raise NotImplementedError

    # --------------------------
    # Negative cache
    # --------------------------
    @staticmethod
    def _failed_id(key: RequestKey) -> str:
        return "|".join(key)

    def _load_failed(self):
        if not self._failed_path.exists():
            return
        try:
            items = read_json_list(self._failed_path)
        except (OSError, ValueError) as e:
            _emit_log(self.callbacks, f"[WARN] [{self.name}] Failed to load failed scraps cache: {e}")
            return
        with self._failed_lock:
            self._failed.update(items)
        _emit_log(self.callbacks, f"[{self.name}] Loaded {len(items)} persistent scraping failures.")

    def _save_failed(self):
        with self._failed_lock:
            items = sorted(self._failed)
        try:
            ensure_dir(self._failed_path.parent)
            self._failed_path.write_text(json.dumps(items, indent=2), encoding="utf-8")
        except OSError as e:
            _emit_log(self.callbacks, f"[WARN] [{self.name}] Failed to save failed scraps cache: {e}")

    def is_known_missing(self, system: str, game: str, media_type: str) -> bool:
        with self._failed_lock:
            return self._failed_id(request_key(system, game, media_type)) in self._failed

    def _mark_missing(self, key: RequestKey):
        with self._failed_lock:
            self._failed.add(self._failed_id(key))
        self._save_failed()

    # --------------------------
    # Scraper contract
    # --------------------------
    def check_and_scrape(self, system, game, game_path, media_type, cancel=None):
        if not self.supports(system, media_type):
            return None

        target = self.cache_path(system, game, game_path, media_type)
        if target.is_file():
            _emit_log(self.callbacks, f"[{self.name}] Media found in cache: {target}")
            return str(target)

        key = request_key(system, game, media_type)
        if self.is_known_missing(system, game, media_type):
            return None
        if is_cancelled(cancel):
            return None

        with self._pending_lock:
            if key in self._pending:
                return None
            # submit() only queues the job; _finish waits for this lock
            self._pending[key] = self._executor.submit(
                self._run, key, system, game, game_path, media_type, target, cancel)

        _emit_log(self.callbacks, f"[{self.name}] Started background scrap for {system}/{game} ({media_type})")
        return None

    def _finish(self, key: RequestKey):
        with self._pending_lock:
            self._pending.pop(key, None)

    def _run(self, key, system, game, game_path, media_type, target, cancel):
        path = None
        failed = False
        try:
            if self.fetch(system, game, game_path, media_type, target, cancel) and target.is_file():
                path = str(target)
        except Exception as e:
            failed = True
            _emit_log(self.callbacks, f"[ERROR] [{self.name}] Error scraping {system}/{game} ({media_type}): {type(e).__name__}: {e}")

        if path:
            _emit_log(self.callbacks, f"[{self.name}] Successfully scraped: {target}")
        elif is_cancelled(cancel):
            # Not a real miss, allow a later retry
            _emit_log(self.callbacks, f"[{self.name}] Scrap cancelled for {system}/{game} ({media_type})")
        elif not failed:
            _emit_log(self.callbacks, f"[{self.name}] Media not found for {system}/{game} ({media_type})")
            self._mark_missing(key)

        # Leave pending before notifying so listeners never see us busy
        self._finish(key)
        self.events.emit(system, game, path)
        return path

    def is_scraping(self, system, game, media_type):
        key = request_key(system, game, media_type)
        with self._pending_lock:
            return key in self._pending

    def wait_idle(self, timeout: Optional[float] = None):
        """Block until the currently pending jobs are done (used by the CLI and tests)."""
        with self._pending_lock:
            futures = list(self._pending.values())
        wait_futures(futures, timeout=timeout)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)


# ==========================
# ArcadeItalia (adb.arcadeitalia.net)
# ==========================
class ArcadeItaliaScraper(BackgroundScraper):
    name = "arcadeitalia"

    DEFAULT_MEDIA_FOLDERS = {"logo": "marquees", "fanart": "snap"}

    def __init__(self, cache_dir: Path, base_url: str = "http://adb.arcadeitalia.net",
                 media_folders: Optional[Dict[str, str]] = None, timeout_s: int = 20,
                 threads: int = 1, callbacks=None):
        self.base_url = base_url.rstrip("/")
        self.media_folders = {k.lower(): v for k, v in (media_folders or self.DEFAULT_MEDIA_FOLDERS).items()}
        self.timeout_s = timeout_s
        super().__init__(cache_dir, threads=threads, callbacks=callbacks)

    def supports(self, system, media_type):
        return media_type.lower() in self.media_folders

    def cache_path(self, system, game, game_path, media_type):
        # MAME short names are the ROM file names
        rom = cache_stem(rom_stem(game_path) or game)
        return self.cache_dir / self.name / cache_stem(system) / f"{rom}_{media_type.lower()}.png"

    def media_urls(self, rom: str, media_type: str) -> List[str]:
        folder = self.media_folders[media_type.lower()]
        return [f"{self.base_url}/media/mame.current/{folder}/{rom}{ext}" for ext in (".png", ".jpg")]

    def fetch(self, system, game, game_path, media_type, target, cancel):
        rom = rom_stem(game_path) or game
        for url in self.media_urls(rom, media_type):
            if is_cancelled(cancel):
                return False
            try:
                data = download_image(url, self.timeout_s)
            except requests.RequestException as e:
                _emit_log(self.callbacks, f"[{self.name}] Failed to download {url}: {e}")
                continue
            if data:
                save_png(data, target)
                return True
        return False


# ==========================
# SteamGridDB heroes / logos
# ==========================
class SteamGridDBScraper(BackgroundScraper):
    name = "steamgriddb"

    KIND_BY_MEDIA = {"fanart": "heroes", "logo": "logos"}

    def __init__(self, cache_dir: Path, api_key: str = "",
                 base_url: str = "https://www.steamgriddb.com/api/v2",
                 timeout_s: int = 40, allow_animated: bool = False,
                 styles: Optional[Dict[str, List[str]]] = None,
                 threads: int = 1, callbacks=None):
        self.api_key = (api_key or "").strip()
        self.base_url = base_url
        self.timeout_s = timeout_s
        self.allow_animated = allow_animated
        self.styles = styles or {}
        super().__init__(cache_dir, threads=threads, callbacks=callbacks)

    def supports(self, system, media_type):
        return bool(self.api_key) and media_type.lower() in self.KIND_BY_MEDIA

    def fetch(self, system, game, game_path, media_type, target, cancel):
        kind = self.KIND_BY_MEDIA[media_type.lower()]
        results = search_with_variants(self.api_key, self.base_url, game, self.timeout_s, callbacks=self.callbacks)
        game_id = choose_game_id(game, results)
        if game_id is None:
            _emit_log(self.callbacks, f"[{self.name}] No search results for '{game}'")
            return False
        if is_cancelled(cancel):
            return False

        images = images_by_game(self.api_key, self.base_url, kind, game_id,
                                self.styles.get(media_type.lower()), self.timeout_s)
        best = pick_best_image(images, self.allow_animated)
        if best is None:
            _emit_log(self.callbacks, f"[{self.name}] No suitable {kind} for game ID {game_id}")
            return False
        if is_cancelled(cancel):
            return False

        data = download_image(best["url"], self.timeout_s)
        if not data:
            return False
        save_png(data, target)
        return True


# ==========================
# Registry
# ==========================
def _threads(settings: dict) -> int:
    return int(settings.get("threads", 1))


def _build_local(config, callbacks):
    return LocalMediaScraper(config.media_dir, callbacks=callbacks)


def _build_arcadeitalia(config, callbacks):
    s = config.scraper_settings("arcadeitalia")
    return ArcadeItaliaScraper(
        config.cache_dir,
        base_url=s.get("base_url", "http://adb.arcadeitalia.net"),
        media_folders=s.get("media_folders"),
        timeout_s=int(s.get("request_timeout_seconds", 20)),
        threads=_threads(s),
        callbacks=callbacks,
    )


def _build_steamgriddb(config, callbacks):
    s = config.scraper_settings("steamgriddb")
    api_env = s.get("api_key_env", "SGDB_API_KEY")
    return SteamGridDBScraper(
        config.cache_dir,
        api_key=os.environ.get(api_env, ""),
        base_url=s.get("base_url", "https://www.steamgriddb.com/api/v2"),
        timeout_s=int(s.get("request_timeout_seconds", 40)),
        allow_animated=bool(s.get("allow_animated", False)),
        styles=s.get("styles"),
        threads=_threads(s),
        callbacks=callbacks,
    )


SCRAPER_FACTORIES: Dict[str, Callable] = {
    "local": _build_local,
    "arcadeitalia": _build_arcadeitalia,
    "steamgriddb": _build_steamgriddb,
}


def build_scrapers(config, callbacks=None) -> List[ScraperService]:
    """Instantiate every known scraper that is not disabled in config."""
    scrapers = []
    for name, factory in SCRAPER_FACTORIES.items():
        if not config.scraper_enabled(name):
            _emit_log(callbacks, f"[SCRAPERS] {name} disabled in config")
            continue
        scrapers.append(factory(config, callbacks))
    return scrapers
