#!/usr/bin/env python3
"""
Launcher for the marquee media resolver.

    python run_service.py resolve snes "Zelda" --rom "D:/roms/snes/zelda.sfc" --media fanart --wait 30
    python run_service.py owner snes "Zelda" --media logo
    python run_service.py offset nes "Mario" 5 -3
    python run_service.py scale nes "Mario" 0.1 --logo
    python run_service.py monitor
"""
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional

from marquee_config import MarqueeConfig
from media_backend import CancelToken
from offset_storage import OffsetStorage
from process_monitor import ProcessMonitor
from scraper_manager import ScraperManager, ScraperService
from scrapers import BackgroundScraper, build_scrapers


class MarqueeService:
    """Wires configuration, scrapers, the scraper manager and the offset store."""

    def __init__(self, config_path: Optional[Path] = None, callbacks=None,
                 scrapers: Optional[List[ScraperService]] = None):
        self.callbacks = callbacks
        self.config = MarqueeConfig(config_path, callbacks=callbacks)
        self.scrapers = scrapers if scrapers is not None else build_scrapers(self.config, callbacks)
        self.manager = ScraperManager(self.scrapers, self.config, callbacks=callbacks)
        self.offsets = OffsetStorage(self.config.offsets_path, callbacks=callbacks)
        self.cancel = CancelToken()

    def build_monitor(self) -> ProcessMonitor:
        s = self.config.monitor_settings
        return ProcessMonitor(
            str(s["process_name"]),
            on_shutdown=self.close,
            check_interval_s=float(s["check_interval_seconds"]),
            grace_period_s=float(s["grace_period_seconds"]),
            initial_delay_s=float(s["initial_delay_seconds"]),
            callbacks=self.callbacks,
        )

    def resolve_and_wait(self, system: str, game: str, game_path: str, media_type: str,
                         timeout_s: float = 0) -> Optional[str]:
        """Resolve media; while a scraper holds the request, wait for it and resolve again."""
        changed = threading.Event()

        def on_completed(sys_name, game_name, path):
            if sys_name.lower() == system.lower() and game_name == game:
                changed.set()

        deadline = time.monotonic() + timeout_s
        handle = self.manager.events.subscribe(on_completed)
        try:
            while True:
                path = self.manager.check_and_scrape(system, game, game_path, media_type, cancel=self.cancel)
                if path or timeout_s <= 0:
                    return path
                if not self.manager.is_scraping(system, game, media_type):
                    return None
                # Events carry no media type and another lane of the same game
                # may finish first, so wait until this lane is idle and re-resolve.
                while self.manager.is_scraping(system, game, media_type):
                    remaining = deadline - time.monotonic()
                    if remaining <= 0 or self.cancel.is_cancelled:
                        return None
                    changed.wait(remaining)
                    changed.clear()
        finally:
            self.manager.events.unsubscribe(handle)

    def close(self):
        self.cancel.cancel()
        for scraper in self.scrapers:
            if isinstance(scraper, BackgroundScraper):
                scraper.shutdown(wait=False)


def main(argv=None) -> int:
    import argparse

    parser = argparse.ArgumentParser(description="Resolve marquee artwork for a game")
    parser.add_argument("--config", type=str, help="Path to config.yaml")
    parser.add_argument("--quiet", action="store_true", help="Only print results")
    sub = parser.add_subparsers(dest="command", required=True)

    p_resolve = sub.add_parser("resolve", help="Find fanart or logo for a game")
    p_resolve.add_argument("system")
    p_resolve.add_argument("game")
    p_resolve.add_argument("--rom", default="", help="ROM path, used as a lookup hint")
    p_resolve.add_argument("--media", default="fanart", help="Media type (fanart, logo)")
    p_resolve.add_argument("--wait", type=float, default=0, help="Seconds to wait for background scrapers")

    p_owner = sub.add_parser("owner", help="Show which scraper is working on a game")
    p_owner.add_argument("system")
    p_owner.add_argument("game")
    p_owner.add_argument("--media", default="fanart")

    p_offset = sub.add_parser("offset", help="Move background or logo")
    p_offset.add_argument("system")
    p_offset.add_argument("game")
    p_offset.add_argument("dx", type=int)
    p_offset.add_argument("dy", type=int)
    p_offset.add_argument("--logo", action="store_true")

    p_scale = sub.add_parser("scale", help="Scale background or logo")
    p_scale.add_argument("system")
    p_scale.add_argument("game")
    p_scale.add_argument("delta", type=float)
    p_scale.add_argument("--logo", action="store_true")

    sub.add_parser("monitor", help="Exit when the frontend process goes away")

    args = parser.parse_args(argv)
    callbacks = None if args.quiet else {"log": print}
    service = MarqueeService(Path(args.config) if args.config else None, callbacks=callbacks)

    try:
        if args.command == "resolve":
            path = service.resolve_and_wait(args.system, args.game, args.rom, args.media, args.wait)
            if path:
                print(path)
                return 0
            owner = service.manager.get_active_scraper_name(args.system, args.game, args.media)
            print(f"Still scraping via {owner}" if owner else "No media found")
            return 1

        if args.command == "owner":
            owner = service.manager.get_active_scraper_name(args.system, args.game, args.media)
            print(owner or "idle")
            return 0

        if args.command == "offset":
            print(service.offsets.update_offset(args.system, args.game, args.dx, args.dy, args.logo))
            return 0

        if args.command == "scale":
            print(service.offsets.update_scale(args.system, args.game, args.delta, args.logo))
            return 0

        if args.command == "monitor":
            if not service.config.monitor_settings.get("enabled", True):
                print("Monitor disabled in config")
                return 0
            monitor = service.build_monitor()
            monitor.run(service.cancel)
            return 0
    finally:
        service.close()
    return 2


if __name__ == "__main__":
    sys.exit(main())
