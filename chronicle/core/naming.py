"""Local file names for downloaded newspaper pages.

Archive page URLs look like
``/lccn/<lccn>/<yyyy-mm-dd>/ed-<n>/seq-<n>.pdf``; the helpers here flatten that
path into a single safe file name so every page of every issue gets its own
file in one output directory.
"""
from __future__ import annotations

import hashlib
import os
import re
from pathlib import PurePosixPath
from typing import Tuple
from urllib.parse import urlparse

DEFAULT_PAGE_EXTENSION = ".pdf"
MAX_STEM_LENGTH = 120
DIGEST_LENGTH = 8

_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_SEPARATORS = re.compile(r"[\s._-]+")
_EXTENSION = re.compile(r"\.[A-Za-z0-9]{1,5}")


def to_snake_case(value: str) -> str:
    """Lowercase value and join its alphanumeric runs with single underscores."""
    if value is None:
        return ""
    return "_".join(re.findall(r"[0-9A-Za-z]+", str(value))).lower()


def split_extension(name: str) -> Tuple[str, str]:
    """Split name into (stem, extension).

    Only a short alphanumeric final suffix counts as an extension, so dates
    and edition markers ("1921-03-15", "ed-1") stay in the stem.
    """
    base = PurePosixPath(name).name
    ext = PurePosixPath(base).suffix
    if not _EXTENSION.fullmatch(ext):
        return base, ""
    return base[: -len(ext)], ext


def sanitize_filename(name: str, max_stem_len: int = MAX_STEM_LENGTH) -> str:
    """Make name safe for common filesystems, keeping its extension.

    Illegal characters are dropped, runs of whitespace, dots, dashes and
    underscores become a single underscore, and the stem is cut to
    max_stem_len characters.
    """
    if not name:
        return "_untitled_"

    stem, ext = split_extension(name)
    stem = _SEPARATORS.sub("_", _ILLEGAL_CHARS.sub("", stem)).strip("_")
    return f"{stem[:max_stem_len] or '_untitled_'}{ext}"


def url_digest(url: str) -> str:
    """Short stable digest of a full URL."""
    return hashlib.sha1(url.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]


def page_filename(url: str) -> str:
    """Build a local file name for an archive page URL.

    "https://chroniclingamerica.loc.gov/lccn/sn84026749/1921-03-15/ed-1/seq-4.pdf"
    becomes "sn84026749_1921_03_15_ed_1_seq_4.pdf". URLs that carry a query
    string or have no file extension get a digest of the whole URL appended
    to the stem, so "seq-4.pdf", "seq-4/" and "seq-4.pdf?x=2" name different files.

    Args:
        url: Page file URL

    Returns:
        Sanitized file name; defaults to a .pdf extension when the URL has none
    """
    parsed = urlparse(url)
    segments = [s for s in parsed.path.split("/") if s]
    if segments and segments[0] == "lccn":
        segments = segments[1:]

    name = "_".join(segments) if segments else (to_snake_case(parsed.netloc) or "page")
    ext = split_extension(name)[1]
    safe = sanitize_filename(name if ext else name + DEFAULT_PAGE_EXTENSION)
    if ext and not parsed.query:
        return safe

    stem, safe_ext = split_extension(safe)
    return f"{stem[: MAX_STEM_LENGTH - DIGEST_LENGTH - 1]}_{url_digest(url)}{safe_ext}"


def page_destination(url: str, output_dir: str) -> str:
    """Path inside output_dir where the page at url is stored."""
    return os.path.join(output_dir, page_filename(url))
