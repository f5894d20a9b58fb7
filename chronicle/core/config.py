"""JSON configuration for the archive client.

The file named by CHRONICLE_CONFIG_PATH (default: ./config.json) is read once
and cached. Three sections are recognised, each filled with defaults:

    archive   endpoint base URL, search path, hits per page
    network   timeouts, retries, pacing, worker count, extra headers
    download  output directory, chunk size, overwrite policy
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

from ..model import ARCHIVE_BASE_URL

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CHRONICLE_CONFIG_PATH"
DEFAULT_CONFIG_PATH = "config.json"
DEFAULT_ROWS_PER_PAGE = 20

ARCHIVE_DEFAULTS: Dict[str, Any] = {
    "base_url": ARCHIVE_BASE_URL,
    "search_path": "/search/pages/results/",
    "rows_per_page": DEFAULT_ROWS_PER_PAGE,
}

NETWORK_DEFAULTS: Dict[str, Any] = {
    "timeout_s": 30.0,
    "max_attempts": 3,
    "backoff_factor": 0.8,
    "delay_ms": 0,
    "jitter_ms": 0,
    "max_workers": 4,
    "verify_ssl": True,
}

DOWNLOAD_DEFAULTS: Dict[str, Any] = {
    "output_dir": "downloaded_pages",
    "chunk_size": 8192,
    "overwrite_existing": False,
}

_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def get_config(force_reload: bool = False) -> Dict[str, Any]:
    """Return the parsed configuration file, loading it on first use.

    A missing or unreadable file yields an empty dict so that every section
    falls back to its defaults.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload:
        return _CONFIG_CACHE

    path = os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)
    loaded: Dict[str, Any] = {}
    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded = json.load(f) or {}
            logger.debug("Loaded config from %s", path)
        except (OSError, ValueError) as e:
            logger.error("Failed to load config from %s: %s", path, e)
            loaded = {}
    _CONFIG_CACHE = loaded
    return _CONFIG_CACHE


def _section(name: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
    # Copy so callers can't mutate the cached file contents
    section = dict(get_config().get(name) or {})
    for key, value in defaults.items():
        section.setdefault(key, value)
    return section


def get_archive_config() -> Dict[str, Any]:
    """Archive endpoint settings with defaults applied."""
    return _section("archive", ARCHIVE_DEFAULTS)


def get_search_url() -> str:
    """Full URL of the archive page search endpoint."""
    arc = get_archive_config()
    return str(arc["base_url"]).rstrip("/") + "/" + str(arc["search_path"]).lstrip("/")


def get_rows_per_page() -> int:
    """Number of hits requested per result page."""
    try:
        rows = int(get_archive_config().get("rows_per_page"))
    except (TypeError, ValueError):
        return DEFAULT_ROWS_PER_PAGE
    return rows if rows > 0 else DEFAULT_ROWS_PER_PAGE


def get_network_config() -> Dict[str, Any]:
    """Network policy for the HTTP transport.

    Returns:
        Network settings with every field populated; "headers" is always a dict
    """
    net = _section("network", NETWORK_DEFAULTS)
    if not isinstance(net.get("headers"), dict):
        net["headers"] = {}
    return net


def get_download_config() -> Dict[str, Any]:
    """Download settings with defaults applied."""
    return _section("download", DOWNLOAD_DEFAULTS)


def overwrite_existing() -> bool:
    """Whether pages already on disk are fetched again."""
    return bool(get_download_config()["overwrite_existing"])
