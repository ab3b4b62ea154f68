"""
Scraper manager: picks which media source answers a request.

Scrapers are walked in the configured priority order. The first one that
returns a path wins. A scraper that declines but reports it is already
working on the request owns it, and the walk stops there so a lower
priority source never races it. Results of background work arrive later
through the completion events, which the manager re-broadcasts.
"""
import itertools
import threading
from typing import Callable, Dict, Iterable, List, Optional

from media_backend import CancelToken, _emit_log, is_cancelled


# (system, game, path or None)
CompletionCallback = Callable[[str, str, Optional[str]], None]


class ScraperEvents:
    """Completion event fan-out. Safe to subscribe while events are emitted."""

    def __init__(self, callbacks=None):
        self.callbacks = callbacks
        self._lock = threading.Lock()
        self._subscribers: Dict[int, CompletionCallback] = {}
        self._ids = itertools.count(1)

    def subscribe(self, callback: CompletionCallback) -> int:
        with self._lock:
            handle = next(self._ids)
            self._subscribers[handle] = callback
        return handle

    def unsubscribe(self, handle: int) -> bool:
        with self._lock:
            return self._subscribers.pop(handle, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def emit(self, system: str, game: str, path: Optional[str]) -> None:
        with self._lock:
            targets = list(self._subscribers.values())
        for callback in targets:
            try:
                callback(system, game, path)
            except Exception as e:
                _emit_log(self.callbacks, f"[ERROR] Completion subscriber failed for {system}/{game}: {type(e).__name__}: {e}")


class ScraperService:
    """
    Base for media sources.

    check_and_scrape returns a path when the media is available right away.
    Otherwise it returns None, possibly after starting background work that
    is_scraping then reports until a completion event is emitted.
    """

    name = ""

    def __init__(self, callbacks=None):
        self.callbacks = callbacks
        self.events = ScraperEvents(callbacks)

    def check_and_scrape(
        self,
        system: str,
        game: str,
        game_path: str,
        media_type: str,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[str]:
        raise NotImplementedError

    def is_scraping(self, system: str, game: str, media_type: str) -> bool:
        return False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"


def _require(value: str, field: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field} must be a non-empty string")


class ScraperManager:
    def __init__(self, scrapers: Iterable[ScraperService], config, callbacks=None):
        self._scrapers: List[ScraperService] = list(scrapers)
        self.config = config
        self.callbacks = callbacks
        self.events = ScraperEvents(callbacks)

        for scraper in self._scrapers:
            scraper.events.subscribe(self.events.emit)

        names = ", ".join(s.name for s in self._scrapers)
        _emit_log(callbacks, f"[ScraperManager] Initialized with {len(self._scrapers)} scrapers: {names}")

    @property
    def scrapers(self) -> List[ScraperService]:
        return list(self._scrapers)

    def find_scraper(self, name: str) -> Optional[ScraperService]:
        wanted = (name or "").strip().lower()
        for scraper in self._scrapers:
            if scraper.name.lower() == wanted:
                return scraper
        return None

    def check_and_scrape(
        self,
        system: str,
        game: str,
        game_path: str,
        media_type: str,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[str]:
        _require(system, "system")
        _require(game, "game")
        _require(media_type, "media_type")

        priorities = list(self.config.scraper_priorities)

        for scraper_name in priorities:
            if is_cancelled(cancel):
                _emit_log(self.callbacks, f"[ScraperManager] Cancelled before {scraper_name} for {system}/{game} ({media_type})")
                return None

            scraper = self.find_scraper(scraper_name)
            if scraper is None:
                _emit_log(self.callbacks, f"[WARN] [ScraperManager] Configured scraper source '{scraper_name}' not found/registered.")
                continue

            try:
                result = scraper.check_and_scrape(system, game, game_path, media_type, cancel=cancel)
            except Exception as e:
                _emit_log(self.callbacks, f"[ERROR] [ScraperManager] {scraper.name} failed for {system}/{game} ({media_type}): {type(e).__name__}: {e}")
                continue

            if result:
                _emit_log(self.callbacks, f"[ScraperManager] Found media via {scraper.name} for {game} ({result})")
                return result

            if is_cancelled(cancel):
                _emit_log(self.callbacks, f"[ScraperManager] Cancelled during {scraper.name} for {system}/{game} ({media_type})")
                return None

            # Strict priority: a scraper working in the background owns the request
            if self._safe_is_scraping(scraper, system, game, media_type):
                _emit_log(self.callbacks, f"[ScraperManager] {scraper.name} is handling {system}/{game} ({media_type}). Stopping chain.")
                return None

        return None

    # Same operation under the name callers outside the scraper code use
    resolve = check_and_scrape

    def is_scraping(self, system: str, game: str, media_type: str) -> bool:
        return any(self._safe_is_scraping(s, system, game, media_type) for s in self._scrapers)

    def get_active_scraper_name(self, system: str, game: str, media_type: str) -> Optional[str]:
        # Priority order first
        for scraper_name in self.config.scraper_priorities:
            scraper = self.find_scraper(scraper_name)
            if scraper is not None and self._safe_is_scraping(scraper, system, game, media_type):
                return scraper.name

        # Then any registered scraper that is not in the priority list
        for scraper in self._scrapers:
            if self._safe_is_scraping(scraper, system, game, media_type):
                return scraper.name
        return None

    def _safe_is_scraping(self, scraper: ScraperService, system: str, game: str, media_type: str) -> bool:
        try:
            return bool(scraper.is_scraping(system, game, media_type))
        except Exception as e:
            _emit_log(self.callbacks, f"[ERROR] [ScraperManager] {scraper.name} busy check failed: {type(e).__name__}: {e}")
            return False
