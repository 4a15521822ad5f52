"""Parsing of the wiki collection log rarity table (BeautifulSoup).

The rendered table looks like this (whitespace trimmed)::

    <tr data-item-id="6571">
      <td><span typeof="mw:File"><a href="/w/File:Uncut_onyx.png"><img .../></a></span>
          <a href="/w/Uncut_onyx" title="Uncut onyx">Uncut onyx</a></td>
      <td><a title="Zalcano">Zalcano</a>, <a title="Zulrah">Zulrah</a>, Miscellaneous</td>
      <td class="table-bg-yellow">17.9%</td>
    </tr>

Each ``tr[data-item-id]`` is visited once and turned into one ``ItemRecord``.
Rows that cannot be read are reported as diagnostics instead of aborting.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from bs4 import BeautifulSoup  # type: ignore

from domain.models import ItemRecord
from utils import html_utils
from .errors import EnvelopeError, ParseError, RowShapeError, RowValueError

_log = logging.getLogger(__name__)

MIN_DISPLAYED_RATE = 0.1

# (substring in item_name, synthetic category)
SYNTHETIC_TAGS: Tuple[Tuple[str, str], ...] = (
    ("3rd age", "Third Age"),
    ("Gilded", "Gilded"),
)


@dataclass
class ParseResult:
    records: List[ItemRecord] = field(default_factory=list)
    skipped: List[ParseError] = field(default_factory=list)

    @property
    def rows_seen(self) -> int:
        return len(self.records) + len(self.skipped)


def extract_html(payload: dict[str, Any]) -> str:
    """Return the rendered HTML from a MediaWiki ``action=parse`` envelope."""
    try:
        html = payload["parse"]["text"]["*"]
    except (KeyError, TypeError) as e:
        keys = sorted(payload) if isinstance(payload, dict) else type(payload).__name__
        raise EnvelopeError(f"API response carries no parse.text HTML (top level: {keys})") from e
    if not isinstance(html, str) or not html.strip():
        raise EnvelopeError("API response HTML is empty")
    return html


def parse_rate(text: str) -> float:
    """Parse a displayed completion percentage such as ``17.9%`` or ``<0.1%``."""
    text = text.strip()
    if text.startswith("<"):
        return MIN_DISPLAYED_RATE
    try:
        rate = float(text.rstrip("%").strip())
    except ValueError as e:
        raise RowValueError(f"Unparsable completion rate {text!r}") from e
    if not math.isfinite(rate) or rate <= 0.0 or rate > 100.0:
        raise RowValueError(f"Completion rate {rate} outside (0, 100]")
    return rate


def with_synthetic_tags(item_name: str, categories: List[str]) -> Tuple[str, ...]:
    tags = list(categories)
    for needle, tag in SYNTHETIC_TAGS:
        if needle in item_name and tag not in tags:
            tags.append(tag)
    return tuple(tags)


def _parse_row(tr) -> ItemRecord:
    raw_id = (tr.get("data-item-id") or "").strip()
    try:
        item_id = int(raw_id)
    except ValueError as e:
        raise RowValueError(f"Non-numeric item id {raw_id!r}") from e
    tds = tr.find_all("td", recursive=False) or tr.find_all("td")
    if len(tds) < 3:
        raise RowShapeError(f"Expected 3 columns, found {len(tds)}")
    # First link is the decorative inventory image
    links = tds[0].find_all("a")
    name_link: Optional[Any] = links[1] if len(links) > 1 else None
    item_name = html_utils.clean_cell(name_link.get("title") or "") if name_link else ""
    if not item_name:
        raise RowValueError("Row has no item name link")
    preferred_name = html_utils.clean_cell(name_link.get_text()) or item_name
    categories = html_utils.split_categories(tds[1].get_text())
    try:
        rate = parse_rate(tds[-1].get_text())
    except RowValueError as e:
        e.item_name = item_name
        raise
    return ItemRecord(
        item_id=item_id,
        item_name=item_name,
        preferred_name=preferred_name,
        completion_rate=rate,
        categories=with_synthetic_tags(item_name, categories),
    )


def parse_rarity_table(html: str) -> ParseResult:
    soup = BeautifulSoup(html, "html.parser")
    result = ParseResult()
    for index, tr in enumerate(soup.find_all("tr", attrs={"data-item-id": True})):
        try:
            record = _parse_row(tr)
        except ParseError as e:
            e.at_row(index, tr.get("data-item-id"))
            _log.warning("Skipping rarity row: %s", e.describe())
            result.skipped.append(e)
            continue
        _log.debug(
            "Parsed %s (%d) at %s%% in %s",
            record.item_name,
            record.item_id,
            record.completion_rate,
            record.categories_text,
        )
        result.records.append(record)
    return result


__all__ = [
    "ParseResult",
    "extract_html",
    "parse_rate",
    "parse_rarity_table",
    "with_synthetic_tags",
    "MIN_DISPLAYED_RATE",
]
