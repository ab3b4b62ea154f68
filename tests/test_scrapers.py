import json
import threading
from concurrent.futures import Future

import pytest
from PIL import Image

import scrapers
from marquee_config import MarqueeConfig
from scraper_manager import ScraperManager
from scrapers import (
    ArcadeItaliaScraper,
    BackgroundScraper,
    LocalMediaScraper,
    SteamGridDBScraper,
    build_scrapers,
)


class GatedScraper(BackgroundScraper):
    """Background scraper whose download blocks until the test opens the gate."""

    name = "gated"

    def __init__(self, cache_dir, outcome=True, callbacks=None):
        self.gate = threading.Event()
        self.outcome = outcome
        self.fetches = 0
        super().__init__(cache_dir, callbacks=callbacks)

    def fetch(self, system, game, game_path, media_type, target, cancel):
        self.fetches += 1
        self.gate.wait(5)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        if self.outcome:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(b"img")
            return True
        return False


@pytest.fixture
def gated(tmp_path):
    scraper = GatedScraper(tmp_path / "cache")
    yield scraper
    scraper.gate.set()
    scraper.shutdown()


# ==========================
# Local media folder
# ==========================
def test_local_finds_suffixed_file_by_rom_name(tmp_path):
    art = tmp_path / "media" / "snes" / "zelda-fanart.png"
    art.parent.mkdir(parents=True)
    art.write_bytes(b"x")
    local = LocalMediaScraper(tmp_path / "media")

    assert local.check_and_scrape("snes", "The Legend of Zelda", "C:\\roms\\snes\\zelda.sfc", "fanart") == str(art)
    assert local.is_scraping("snes", "The Legend of Zelda", "fanart") is False


def test_local_finds_media_type_folder_by_game_name(tmp_path):
    art = tmp_path / "media" / "nes" / "logo" / "Mario.jpg"
    art.parent.mkdir(parents=True)
    art.write_bytes(b"x")
    local = LocalMediaScraper(tmp_path / "media")

    assert local.check_and_scrape("nes", "Mario", "", "logo") == str(art)
    assert local.check_and_scrape("nes", "Mario", "", "fanart") is None


# ==========================
# Background bookkeeping
# ==========================
def test_background_scrape_reports_busy_until_done(gated):
    events = []
    gated.events.subscribe(lambda *evt: events.append(evt))

    assert gated.check_and_scrape("snes", "Zelda", "", "fanart") is None
    assert gated.is_scraping("snes", "Zelda", "fanart") is True
    assert gated.is_scraping("SNES", "Zelda", "fanart") is True
    assert gated.is_scraping("snes", "Zelda", "logo") is False

    # Repeated polling does not start a second download
    assert gated.check_and_scrape("snes", "Zelda", "", "fanart") is None

    gated.gate.set()
    gated.wait_idle(5)

    target = gated.cache_path("snes", "Zelda", "", "fanart")
    assert gated.fetches == 1
    assert gated.is_scraping("snes", "Zelda", "fanart") is False
    assert events == [("snes", "Zelda", str(target))]
    # Cached now, answered synchronously
    assert gated.check_and_scrape("snes", "Zelda", "", "fanart") == str(target)


def test_pending_requests_are_tracked_as_futures(gated):
    gated.check_and_scrape("snes", "Zelda", "", "fanart")

    assert scrapers.Future is Future
    assert all(isinstance(f, Future) for f in gated._pending.values())
    assert len(gated._pending) == 1


def test_listeners_never_see_source_busy_on_completion(gated):
    seen_busy = []
    gated.events.subscribe(lambda s, g, p: seen_busy.append(gated.is_scraping(s, g, "fanart")))

    gated.check_and_scrape("snes", "Zelda", "", "fanart")
    gated.gate.set()
    gated.wait_idle(5)

    assert seen_busy == [False]


def test_missing_media_goes_to_persistent_negative_cache(tmp_path):
    cache_dir = tmp_path / "cache"
    scraper = GatedScraper(cache_dir, outcome=False)
    events = []
    scraper.events.subscribe(lambda *evt: events.append(evt))
    scraper.gate.set()

    scraper.check_and_scrape("snes", "Zelda", "", "fanart")
    scraper.wait_idle(5)
    scraper.shutdown()

    assert events == [("snes", "Zelda", None)]
    saved = json.loads((cache_dir / "_cache" / "gated_failed.json").read_text(encoding="utf-8"))
    assert saved == ["snes|Zelda|fanart"]

    reloaded = GatedScraper(cache_dir)
    reloaded.gate.set()
    assert reloaded.is_known_missing("snes", "Zelda", "fanart") is True
    assert reloaded.check_and_scrape("snes", "Zelda", "", "fanart") is None
    assert reloaded.is_scraping("snes", "Zelda", "fanart") is False
    assert reloaded.fetches == 0
    reloaded.shutdown()


def test_corrupt_negative_cache_is_ignored(tmp_path, log):
    callbacks, messages = log
    failed = tmp_path / "cache" / "_cache" / "gated_failed.json"
    failed.parent.mkdir(parents=True)
    failed.write_text("{not json", encoding="utf-8")

    scraper = GatedScraper(tmp_path / "cache", callbacks=callbacks)
    assert scraper.is_known_missing("snes", "Zelda", "fanart") is False
    assert any("[WARN]" in m for m in messages)
    scraper.shutdown()


def test_download_error_is_reported_and_retried_later(tmp_path, log):
    callbacks, messages = log
    scraper = GatedScraper(tmp_path / "cache", outcome=ConnectionError("offline"), callbacks=callbacks)
    events = []
    scraper.events.subscribe(lambda *evt: events.append(evt))
    scraper.gate.set()

    scraper.check_and_scrape("snes", "Zelda", "", "fanart")
    scraper.wait_idle(5)

    assert events == [("snes", "Zelda", None)]
    assert scraper.is_known_missing("snes", "Zelda", "fanart") is False
    assert any("[ERROR]" in m and "offline" in m for m in messages)
    scraper.shutdown()


def test_punctuation_only_names_get_distinct_cache_files(tmp_path):
    scraper = GatedScraper(tmp_path / "cache")
    first = scraper.cache_path("snes", "???", "", "fanart")
    second = scraper.cache_path("snes", "!!!", "", "fanart")
    arcade = ArcadeItaliaScraper(tmp_path / "cache")

    assert first != second
    assert first.name != "_fanart.png"
    assert first == scraper.cache_path("snes", "???", "", "fanart")
    assert arcade.cache_path("mame", "...", "", "logo") != arcade.cache_path("mame", ",,,", "", "logo")
    scraper.shutdown()
    arcade.shutdown()


def test_manager_defers_to_background_source_and_forwards_result(gated, make_scraper, make_config):
    online = make_scraper("online", result="/art/online.png")
    manager = ScraperManager([gated, online], make_config(["gated", "online"]))
    results = []
    manager.events.subscribe(lambda *evt: results.append(evt))

    assert manager.check_and_scrape("snes", "Zelda", "", "fanart") is None
    assert manager.get_active_scraper_name("snes", "Zelda", "fanart") == "gated"
    # Second poll while the download runs: still owned, online never asked
    assert manager.check_and_scrape("snes", "Zelda", "", "fanart") is None
    assert online.calls == []

    gated.gate.set()
    gated.wait_idle(5)

    path = str(gated.cache_path("snes", "Zelda", "", "fanart"))
    assert results == [("snes", "Zelda", path)]
    assert manager.check_and_scrape("snes", "Zelda", "", "fanart") == path


# ==========================
# ArcadeItalia
# ==========================
def test_arcadeitalia_downloads_marquee_in_background(tmp_path, monkeypatch, png_bytes):
    requested = []

    def fake_download(url, timeout_s):
        requested.append(url)
        return png_bytes if url.endswith(".jpg") else None

    monkeypatch.setattr(scrapers, "download_image", fake_download)
    scraper = ArcadeItaliaScraper(tmp_path / "cache", base_url="http://adb.example/")
    events = []
    scraper.events.subscribe(lambda *evt: events.append(evt))

    assert scraper.check_and_scrape("mame", "Pac-Man", "/roms/mame/pacman.zip", "logo") is None
    scraper.wait_idle(5)
    scraper.shutdown()

    assert requested == [
        "http://adb.example/media/mame.current/marquees/pacman.png",
        "http://adb.example/media/mame.current/marquees/pacman.jpg",
    ]
    target = tmp_path / "cache" / "arcadeitalia" / "mame" / "pacman_logo.png"
    assert events == [("mame", "Pac-Man", str(target))]
    with Image.open(target) as img:
        assert img.format == "PNG"
        assert img.size == (8, 4)


def test_arcadeitalia_ignores_unmapped_media_types(tmp_path, monkeypatch):
    monkeypatch.setattr(scrapers, "download_image", lambda url, timeout_s: pytest.fail("no download expected"))
    scraper = ArcadeItaliaScraper(tmp_path / "cache", media_folders={"logo": "marquees"})

    assert scraper.check_and_scrape("mame", "Pac-Man", "pacman.zip", "fanart") is None
    assert scraper.is_scraping("mame", "Pac-Man", "fanart") is False
    scraper.shutdown()


# ==========================
# SteamGridDB
# ==========================
def test_steamgriddb_without_api_key_never_claims_requests(tmp_path):
    scraper = SteamGridDBScraper(tmp_path / "cache", api_key="")

    assert scraper.check_and_scrape("snes", "Zelda", "", "fanart") is None
    assert scraper.is_scraping("snes", "Zelda", "fanart") is False
    scraper.shutdown()


def test_steamgriddb_picks_exact_match_and_best_logo(tmp_path, monkeypatch, png_bytes):
    calls = {}

    def fake_search(api_key, base_url, title, timeout_s, callbacks=None):
        return [{"id": 1, "name": "Zelda II"}, {"id": 2, "name": "Zelda"}]

    def fake_images(api_key, base_url, kind, game_id, styles, timeout_s):
        calls["images"] = (kind, game_id, styles)
        return [
            {"id": 10, "score": 1, "url": "https://cdn/low.png"},
            {"id": 11, "score": 9, "url": "https://cdn/animated.webp"},
            {"id": 12, "score": 5, "url": "https://cdn/best.png"},
        ]

    def fake_download(url, timeout_s):
        calls["download"] = url
        return png_bytes

    monkeypatch.setattr(scrapers, "search_with_variants", fake_search)
    monkeypatch.setattr(scrapers, "images_by_game", fake_images)
    monkeypatch.setattr(scrapers, "download_image", fake_download)

    scraper = SteamGridDBScraper(tmp_path / "cache", api_key="key", styles={"logo": ["official"]})
    assert scraper.check_and_scrape("snes", "Zelda", "", "logo") is None
    scraper.wait_idle(5)
    scraper.shutdown()

    assert calls["images"] == ("logos", 2, ["official"])
    assert calls["download"] == "https://cdn/best.png"
    assert scraper.cache_path("snes", "Zelda", "", "logo").is_file()


# ==========================
# Registry
# ==========================
def test_build_scrapers_skips_disabled_sources(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "scrapers:\n"
        "  priority: [local, arcadeitalia]\n"
        "  arcadeitalia:\n"
        "    enabled: false\n",
        encoding="utf-8",
    )
    built = build_scrapers(MarqueeConfig(config_path))

    assert [s.name for s in built] == ["local", "steamgriddb"]
    for s in built:
        if isinstance(s, BackgroundScraper):
            s.shutdown()
