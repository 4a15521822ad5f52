"""Simple filesystem cache for wiki API responses."""

from __future__ import annotations

import hashlib
import os
import time
from typing import Mapping, Optional
from urllib.parse import urlencode

from config import settings

CACHE_DIR = os.path.join(settings.DATA_DIR, "_cache")


def cache_key(url: str, params: Mapping[str, str] | None = None) -> str:
    """Stable key for a GET request; parameter order does not matter."""
    query = urlencode(sorted((params or {}).items()))
    raw = f"{url}?{query}" if query else url
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _path(key: str, cache_dir: str) -> str:
    return os.path.join(cache_dir, key + ".cache")


def get(key: str, ttl: int = settings.CACHE_TTL, cache_dir: str | None = None) -> Optional[str]:
    p = _path(key, cache_dir or CACHE_DIR)
    if not os.path.exists(p):
        return None
    if time.time() - os.stat(p).st_mtime > ttl:
        return None
    with open(p, "r", encoding="utf-8") as fh:
        return fh.read()


def put(key: str, content: str, cache_dir: str | None = None) -> None:
    target = cache_dir or CACHE_DIR
    os.makedirs(target, exist_ok=True)
    with open(_path(key, target), "w", encoding="utf-8") as fh:
        fh.write(content)
