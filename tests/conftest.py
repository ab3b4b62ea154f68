from io import BytesIO

import pytest
from PIL import Image

from scraper_manager import ScraperService


class FakeScraper(ScraperService):
    """Scraper with scripted answers that records every call it receives."""

    def __init__(self, name, result=None, busy=False, error=None, busy_error=None, callbacks=None):
        super().__init__(callbacks)
        self.name = name
        self.result = result
        self.busy = busy
        self.error = error
        self.busy_error = busy_error
        self.calls = []
        self.busy_calls = []

    def check_and_scrape(self, system, game, game_path, media_type, cancel=None):
        self.calls.append((system, game, game_path, media_type))
        if self.error is not None:
            raise self.error
        return self.result

    def is_scraping(self, system, game, media_type):
        self.busy_calls.append((system, game, media_type))
        if self.busy_error is not None:
            raise self.busy_error
        if callable(self.busy):
            return self.busy(system, game, media_type)
        return self.busy


class FakeConfig:
    def __init__(self, priorities):
        self.priorities = list(priorities)
        self.reads = 0

    @property
    def scraper_priorities(self):
        self.reads += 1
        return list(self.priorities)


@pytest.fixture
def make_scraper():
    return FakeScraper


@pytest.fixture
def make_config():
    return FakeConfig


@pytest.fixture
def log():
    messages = []
    callbacks = {"log": messages.append}
    return callbacks, messages


@pytest.fixture
def png_bytes():
    buf = BytesIO()
    Image.new("RGB", (8, 4), (200, 30, 30)).save(buf, "PNG")
    return buf.getvalue()
