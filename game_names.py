"""
Game name helpers.
Turns ROM file names and frontend game names into clean titles and
search variants used by the media scrapers.
"""
import re
import unicodedata
from pathlib import PureWindowsPath, PurePosixPath
from typing import List


ARCHIVE_EXTENSIONS = ('zip', '7z', 'rar')


def rom_stem(game_path: str) -> str:
    """
    File name of a ROM without directory or extension.
    Frontends hand us Windows or POSIX paths, handle both.
    """
    if not game_path:
        return ""
    if '\\' in game_path:
        return PureWindowsPath(game_path).stem
    return PurePosixPath(game_path).stem


def clean_game_title(name: str) -> str:
    """
    Clean a ROM filename/folder name to extract a clean game title.
    Removes region tags, version info, dump info and file extensions.
    """
    # Remove archive extension if present
    name = re.sub(r'\.(' + '|'.join(ARCHIVE_EXTENSIONS) + r')$', '', name, flags=re.IGNORECASE)

    # Remove square bracket tags like [!], [U], [E], [J], [h], [b], etc.
    name = re.sub(r'\s*\[[^\]]*\]', '', name)

    # Remove file size patterns like (6.01 GB), (1.2 MB)
    name = re.sub(r'\s*\(\s*\d+\.?\d*\s*(GB|MB|KB|B|bytes?)?\s*\)', '', name, flags=re.IGNORECASE)

    # Remove parenthetical region/version tags
    name = re.sub(r'\s*\((USA|US|Europe|EU|Japan|JP|World|WLD|Rev\s*[A-Z0-9]*|v\d+[.\d]*|Proto|Beta|Alpha|Demo|Sample|Unl|[A-Za-z]{2}(,[A-Za-z]{2})*)\)', '', name, flags=re.IGNORECASE)

    # Remove version patterns like v1.0.1, V2.3
    name = re.sub(r'\s+v\d+(\.\d+)*\b', '', name, flags=re.IGNORECASE)

    # Remove parenthetical disc numbers
    name = re.sub(r'\s*\(Disc\s*\d+[^)]*\)', '', name, flags=re.IGNORECASE)

    # Remove any remaining empty parentheses
    name = re.sub(r'\s*\(\s*\)', '', name)

    name = re.sub(r'\s+', ' ', name).strip()
    return name.rstrip('-_. ')


def normalize_for_search(name: str) -> str:
    """
    Normalize a game title for search - strips accents and most punctuation.
    """
    name = clean_game_title(name)

    # NFD breaks é into e + combining accent, then we strip combining chars
    normalized = unicodedata.normalize('NFD', name)
    search_name = ''.join(c for c in normalized if unicodedata.category(c) != 'Mn')

    replacements = {
        '&': 'and',
        '+': 'plus',
        '™': '',
        '®': '',
        '©': '',
        '’': "'",
        '–': '-',
        '—': '-',
    }
    for old, new in replacements.items():
        search_name = search_name.replace(old, new)

    # Keep apostrophes and hyphens for names
    search_name = re.sub(r"[^\w\s'-]", ' ', search_name)
    return re.sub(r'\s+', ' ', search_name).strip()


def get_search_variants(name: str) -> List[str]:
    """
    Generate multiple search variants for a game title.
    Useful for trying different search terms if the first doesn't match.
    """
    variants = []

    clean = clean_game_title(name)
    if clean:
        variants.append(clean)

    normalized = normalize_for_search(name)
    if normalized and normalized not in variants:
        variants.append(normalized)

    # Try without subtitles (text after : or -)
    for sep in (':', ' - '):
        if sep in clean:
            main_title = clean.split(sep)[0].strip()
            if main_title and main_title not in variants:
                variants.append(main_title)

    # Handle roman numerals vs numbers (e.g., "III" vs "3")
    roman_map = [
        (r'\bIII\b', '3'), (r'\bII\b', '2'), (r'\bIV\b', '4'),
        (r'\bVI\b', '6'), (r'\bVII\b', '7'), (r'\bVIII\b', '8'),
    ]
    for pattern, replacement in roman_map:
        if re.search(pattern, clean):
            variant = re.sub(pattern, replacement, clean)
            if variant not in variants:
                variants.append(variant)

    return variants
