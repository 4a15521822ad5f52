"""Text helpers shared by the rarity parser and the category index."""

from __future__ import annotations

import re
from typing import Iterable

NBSP_RE = re.compile(r"\xa0|&nbsp;?")
WS_RE = re.compile(r"\s+")


def clean_cell(text: str) -> str:
    text = NBSP_RE.sub(" ", text)
    return WS_RE.sub(" ", text).strip()


def split_categories(raw: str) -> list[str]:
    """Split a comma-joined category string into trimmed, distinct labels."""
    return dedupe(t for t in (clean_cell(p) for p in raw.split(",")) if t)


def dedupe(seq: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in seq:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
