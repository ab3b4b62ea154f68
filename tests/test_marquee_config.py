import os

from marquee_config import DEFAULT_PRIORITY, MarqueeConfig, split_priority


def write_config(path, text):
    path.write_text(text, encoding="utf-8")
    return path


def bump_mtime(path, seconds=10):
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + seconds * 1_000_000_000))


def test_priority_list(tmp_path):
    path = write_config(tmp_path / "config.yaml", "scrapers:\n  priority: [Local, ArcadeItalia]\n")
    assert MarqueeConfig(path).scraper_priorities == ["Local", "ArcadeItalia"]


def test_priority_comma_string(tmp_path):
    path = write_config(tmp_path / "config.yaml", "scrapers:\n  priority: 'local, , steamgriddb '\n")
    assert MarqueeConfig(path).scraper_priorities == ["local", "steamgriddb"]


def test_legacy_priority_source_is_migrated(tmp_path):
    path = write_config(tmp_path / "config.yaml", "priority_source: Local,arcadeitalia\n")
    assert MarqueeConfig(path).scraper_priorities == ["Local", "arcadeitalia"]


def test_legacy_screenscraper_source_is_dropped(tmp_path):
    path = write_config(tmp_path / "config.yaml", "priority_source: ScreenScraper, arcadeitalia\n")
    assert MarqueeConfig(path).scraper_priorities == ["arcadeitalia"]


def test_providers_list_keeps_enabled_in_order(tmp_path):
    path = write_config(
        tmp_path / "config.yaml",
        "scrapers:\n"
        "  providers:\n"
        "    - {id: steamgriddb, enabled: true}\n"
        "    - {id: arcadeitalia, enabled: false}\n"
        "    - {id: local}\n",
    )
    assert MarqueeConfig(path).scraper_priorities == ["steamgriddb", "local"]


def test_missing_file_uses_defaults(tmp_path, log):
    callbacks, messages = log
    config = MarqueeConfig(tmp_path / "nope.yaml", callbacks=callbacks)

    assert config.scraper_priorities == DEFAULT_PRIORITY
    assert config.media_dir == tmp_path.resolve() / "media"
    assert config.monitor_settings["process_name"] == "emulationstation"
    assert sum("not found" in m for m in messages) == 1


def test_changes_on_disk_are_picked_up(tmp_path):
    path = write_config(tmp_path / "config.yaml", "scrapers:\n  priority: [local]\n")
    config = MarqueeConfig(path)
    assert config.scraper_priorities == ["local"]

    write_config(path, "scrapers:\n  priority: [arcadeitalia, local]\n")
    bump_mtime(path)
    assert config.scraper_priorities == ["arcadeitalia", "local"]


def test_invalid_yaml_keeps_previous_settings(tmp_path, log):
    callbacks, messages = log
    path = write_config(tmp_path / "config.yaml", "scrapers:\n  priority: [local]\n")
    config = MarqueeConfig(path, callbacks=callbacks)
    assert config.scraper_priorities == ["local"]

    write_config(path, "scrapers: [unclosed\n")
    bump_mtime(path)
    assert config.scraper_priorities == ["local"]
    assert any("[ERROR]" in m for m in messages)


def test_paths_resolve_from_config_folder(tmp_path):
    path = write_config(
        tmp_path / "config.yaml",
        f"paths:\n  media_dir: art\n  cache_dir: {(tmp_path / 'elsewhere').as_posix()}\n",
    )
    config = MarqueeConfig(path)

    assert config.media_dir == tmp_path.resolve() / "art"
    assert config.cache_dir == tmp_path / "elsewhere"
    assert config.offsets_path == tmp_path.resolve() / "offsets.json"


def test_scraper_settings_lookup_is_case_insensitive(tmp_path):
    path = write_config(
        tmp_path / "config.yaml",
        "scrapers:\n  ArcadeItalia:\n    base_url: http://mirror\n    enabled: false\n",
    )
    config = MarqueeConfig(path)

    assert config.scraper_settings("arcadeitalia")["base_url"] == "http://mirror"
    assert config.scraper_enabled("arcadeitalia") is False
    assert config.scraper_enabled("local") is True


def test_split_priority():
    assert split_priority(None) == []
    assert split_priority(["a", " b "]) == ["a", "b"]
    assert split_priority("a,b") == ["a", "b"]


def test_legacy_screenscraper_only_falls_back_to_defaults(tmp_path):
    path = write_config(tmp_path / "config.yaml", "priority_source: ScreenScraper\n")
    assert MarqueeConfig(path).scraper_priorities == DEFAULT_PRIORITY
