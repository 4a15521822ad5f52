"""Ingestion pipeline: wiki rarity table -> item catalog.

Steps:
  1. Fetch the rendered ``Collection_log/Table`` page through the MediaWiki parse API.
  2. Parse rows into ``ItemRecord`` objects (bad rows become diagnostics).
  3. Upsert all records as one atomic batch keyed by item id.
  4. Refresh the category index (insert-if-absent, clamp flags preserved).
  5. Reload the in-memory rate lookup under the exclusive lock.

Fetch failures and an envelope without HTML abort the run; a single bad row
never does. Running twice against the same page leaves the catalog unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

from config import settings
from core import async_http
from domain.models import ItemRecord
from parsing.rarity_parser import extract_html, parse_rarity_table
from services.catalog import ItemCatalog

_log = logging.getLogger(__name__)

TABLE_PARAMS: Dict[str, str] = {
    "action": "parse",
    "page": settings.WIKI_TABLE_PAGE,
    "format": "json",
    "prop": "text",
}


@dataclass
class IngestReport:
    ingested: int = 0
    skipped: int = 0
    duplicates: int = 0
    new_categories: int = 0
    source_bytes: int = 0
    diagnostics: List[str] = field(default_factory=list)


def collapse_duplicate_names(records: List[ItemRecord]) -> List[ItemRecord]:
    """Keep one record per item name: the most completed one (lowest id on ties)."""
    best: Dict[str, ItemRecord] = {}
    for r in records:
        current = best.get(r.item_name)
        if current is None or (r.completion_rate, -r.item_id) > (
            current.completion_rate,
            -current.item_id,
        ):
            best[r.item_name] = r
    return list(best.values())


class IngestionPipeline:
    def __init__(
        self,
        catalog: ItemCatalog,
        *,
        client: Optional[httpx.AsyncClient] = None,
        url: str | None = None,
        use_cache: bool = False,
    ):
        self._catalog = catalog
        self._client = client
        self._url = url or settings.WIKI_API_URL
        self._use_cache = use_cache

    async def fetch_table_html(self) -> str:
        _log.info("Fetching collection log data from wiki API...")
        payload = await async_http.fetch_json(
            self._url, params=TABLE_PARAMS, client=self._client, use_cache=self._use_cache
        )
        html = extract_html(payload)
        _log.debug("HTML content length: %d bytes", len(html))
        return html

    async def run(self) -> IngestReport:
        html = await self.fetch_table_html()
        report = IngestReport(source_bytes=len(html))
        parsed = parse_rarity_table(html)
        report.skipped = len(parsed.skipped)
        report.diagnostics = [e.describe() for e in parsed.skipped]
        records = collapse_duplicate_names(parsed.records)
        report.duplicates = len(parsed.records) - len(records)
        if report.duplicates:
            _log.warning("Collapsed %d rows sharing an item name", report.duplicates)

        report.ingested = self._catalog.upsert_items(records)
        report.new_categories = self._catalog.refresh_category_index()
        await self._catalog.reload_rates()
        _log.info(
            "Initialized collection log with %d items (%d skipped, %d new categories)",
            report.ingested,
            report.skipped,
            report.new_categories,
        )
        return report


__all__ = ["IngestionPipeline", "IngestReport", "TABLE_PARAMS", "collapse_duplicate_names"]
