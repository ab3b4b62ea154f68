"""Utility module for resolving application paths in both script and frozen modes."""
import sys
from pathlib import Path

# Flag to enable diagnostic output (set to True for debugging path issues)
_DEBUG_PATHS = False


def get_app_dir() -> Path:
    """Get the application's base directory.

    For frozen apps (PyInstaller), this is the directory containing the executable.
    For scripts, this is the script's directory.
    """
    if getattr(sys, 'frozen', False):
        app_dir = Path(sys.executable).parent
        if _DEBUG_PATHS:
            print(f"[app_paths] Frozen mode - app directory: {app_dir}")
        return app_dir
    app_dir = Path(__file__).parent
    if _DEBUG_PATHS:
        print(f"[app_paths] Script mode - app directory: {app_dir}")
    return app_dir


def get_config_path() -> Path:
    return get_app_dir() / "config.yaml"


def get_offsets_path() -> Path:
    return get_app_dir() / "offsets.json"


def resolve_path(value, base_dir: Path) -> Path:
    """Resolve a configured path; relative values are taken from base_dir."""
    p = Path(value).expanduser()
    if not p.is_absolute():
        p = base_dir / p
    return p
