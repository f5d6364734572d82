"""
On-disk layout of the text corpus.

    <data_dir>/<country>/<text_id>_<safe title>!.txt
    <data_dir>/Unknown/...            texts whose author could not be resolved

A file name depends only on (text ID, title), so the analyzer can find a text
knowing nothing more than its author's country.
"""

import re
from pathlib import Path
from typing import Optional, Set, Union

from config import UNKNOWN_DIR_NAME, TEXT_EXTENSION

_FORBIDDEN_CHARS = re.compile(r'[/:*?"<>|]')
_WHITESPACE = re.compile(r"\s+")
_UNDERSCORES = re.compile(r"_+")


def safe_name(value: Optional[str]) -> str:
    """Make ``value`` usable as a file or directory name."""
    value = (value or "").strip()
    value = _FORBIDDEN_CHARS.sub("_", value)
    value = _WHITESPACE.sub("_", value)
    return _UNDERSCORES.sub("_", value)


def text_file_name(text_id: Union[str, int], title: Optional[str]) -> str:
    """File name for a text, e.g. ``123_Под_игото!.txt``."""
    return f"{text_id}_{safe_name(title)}!{TEXT_EXTENSION}"


def country_folder(country: Optional[str]) -> str:
    """Directory name for an author's country; missing countries go to ``Unknown``."""
    return safe_name(country or UNKNOWN_DIR_NAME)


def text_file_path(
    data_dir: Path,
    country: Optional[str],
    text_id: Union[str, int],
    title: Optional[str],
) -> Path:
    return Path(data_dir) / country_folder(country) / text_file_name(text_id, title)


def scan_existing_files(data_dir: Path) -> Set[str]:
    """
    Collect the names of all files one level below the country folders.

    Creates ``data_dir`` if it does not exist yet.
    """
    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)

    existing = set()
    for country_dir in data_dir.iterdir():
        if not country_dir.is_dir():
            continue
        for entry in country_dir.iterdir():
            if entry.is_file():
                existing.add(entry.name)
    return existing
