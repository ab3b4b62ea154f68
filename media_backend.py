import re
import hashlib
import sys
import json
import threading
import subprocess
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
import yaml
from PIL import Image

from game_names import get_search_variants


def _get_subprocess_flags():
    """Get platform-specific subprocess flags to hide console on Windows."""
    if sys.platform == 'win32':
        return {'creationflags': subprocess.CREATE_NO_WINDOW}
    return {}


# ==========================
# Cancel Token
# ==========================
class CancelToken:
    def __init__(self):
        self._evt = threading.Event()

    def cancel(self):
        self._evt.set()

    @property
    def is_cancelled(self) -> bool:
        return self._evt.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to timeout seconds; returns True if cancelled meanwhile."""
        return self._evt.wait(timeout)


def is_cancelled(cancel: Optional[CancelToken]) -> bool:
    return cancel is not None and cancel.is_cancelled


# ==========================
# Utilities
# ==========================
def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)

def safe_slug(s: str, limit: int = 180) -> str:
    s = (s or "").strip()
    s = re.sub(r"[^\w\- ]+", "", s, flags=re.UNICODE)
    s = re.sub(r"\s+", "_", s)
    return s[:limit] if len(s) > limit else s

def load_yaml(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}

def sha256_text(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()

def norm_key(s: str) -> str:
    return re.sub(r"[^a-z0-9]+", "", (s or "").lower())

def read_json_list(path: Path) -> List[str]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON list in {path}")
    return [str(x) for x in data]


def _emit_log(callbacks, msg: str):
    if callbacks is None:
        return
    # Handle dict-style callbacks
    if isinstance(callbacks, dict):
        if "log" in callbacks and callable(callbacks["log"]):
            try:
                callbacks["log"](msg)
            except Exception:
                pass
    # Handle object-style callbacks (signal objects)
    elif hasattr(callbacks, "log"):
        try:
            callbacks.log.emit(msg)
        except Exception:
            pass


# ==========================
# Images
# ==========================
def image_from_bytes(data: bytes) -> Image.Image:
    """Decode image bytes, raising if they are not a readable image."""
    probe = Image.open(BytesIO(data))
    probe.verify()
    # verify() leaves the image unusable, reopen for real decoding
    img = Image.open(BytesIO(data))
    img.load()
    return img

def save_png(data: bytes, path: Path) -> Path:
    """Validate downloaded bytes and store them as PNG at path."""
    img = image_from_bytes(data)
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    ensure_dir(path.parent)
    img.save(path, "PNG", optimize=True)
    return path


# ==========================
# HTTP (thread-local sessions)
# ==========================
_thread_local = threading.local()

USER_AGENT = "MarqueeMedia/1.0"

def get_session(api_key: str = "") -> requests.Session:
    sessions = getattr(_thread_local, "sessions", None)
    if sessions is None:
        sessions = {}
        _thread_local.sessions = sessions
    s = sessions.get(api_key)
    if s is None:
        s = requests.Session()
        s.headers.update({"User-Agent": USER_AGENT})
        if api_key:
            s.headers.update({
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            })
        sessions[api_key] = s
    return s

def download_image(url: str, timeout_s: int) -> Optional[bytes]:
    """GET url and return the body only when the server says it is an image."""
    r = get_session().get(url, timeout=timeout_s)
    if r.status_code != 200:
        return None
    content_type = (r.headers.get("Content-Type") or "").lower()
    if not content_type.startswith("image"):
        return None
    return r.content


# ==========================
# SteamGridDB
# ==========================
def sgdb_get(api_key: str, base_url: str, path: str, params: Optional[dict], timeout_s: int) -> dict:
    url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"
    s = get_session(api_key)
    r = s.get(url, params=params, timeout=timeout_s)
    r.raise_for_status()
    data = r.json()
    if not data.get("success", False):
        raise RuntimeError(data)
    return data

def search_autocomplete(api_key: str, base_url: str, term: str, timeout_s: int) -> List[dict]:
    """Search SteamGridDB autocomplete with a single term."""
    term_q = requests.utils.quote(term)
    data = sgdb_get(api_key, base_url, f"search/autocomplete/{term_q}", None, timeout_s)
    return data.get("data", []) or []


def search_with_variants(api_key: str, base_url: str, title: str, timeout_s: int, callbacks=None) -> List[dict]:
    """
    Search SteamGridDB using multiple search term variants.
    Returns combined unique results in the order they were found.
    """
    variants = get_search_variants(title)
    all_results = []
    seen_ids = set()

    for variant in variants:
        try:
            results = search_autocomplete(api_key, base_url, variant, timeout_s)
        except requests.RequestException as e:
            _emit_log(callbacks, f"[SteamGridDB] Search variant '{variant}' failed: {e}")
            continue

        for result in results:
            rid = result.get("id")
            if rid and rid not in seen_ids:
                seen_ids.add(rid)
                all_results.append(result)

        if len(all_results) >= 5:
            break

    return all_results


def choose_game_id(title: str, results: List[dict]) -> Optional[Any]:
    """Prefer an exact normalized name match, otherwise the top search hit."""
    if not results:
        return None
    wanted = {norm_key(v) for v in get_search_variants(title)}
    for result in results:
        if norm_key(result.get("name", "")) in wanted:
            return result.get("id")
    return results[0].get("id")


def images_by_game(
    api_key: str,
    base_url: str,
    kind: str,
    game_id: Any,
    styles: Optional[List[str]],
    timeout_s: int
) -> List[dict]:
    """Fetch heroes or logos for a game from SteamGridDB."""
    params: Dict[str, str] = {}
    # SteamGridDB API expects comma-separated values, not multiple params
    if styles:
        params["styles"] = ",".join(styles) if isinstance(styles, list) else styles
    data = sgdb_get(api_key, base_url, f"{kind}/game/{game_id}", params or None, timeout_s)
    return data.get("data", []) or []

def is_animated(url: str) -> bool:
    return url.lower().endswith((".webp", ".gif"))

def pick_best_image(images: List[dict], allow_animated: bool) -> Optional[dict]:
    """Pick the best image based on score, upvotes, then id."""
    suitable = []
    for img in images:
        url = (img.get("url") or "").strip()
        if not url:
            continue
        if not allow_animated and is_animated(url):
            continue
        suitable.append(img)
    if not suitable:
        return None
    suitable.sort(key=lambda x: (x.get("score", 0), x.get("upvotes", 0), x.get("id", 0)), reverse=True)
    return suitable[0]
