"""Item catalog: persistent item/category store plus the in-memory rate lookup.

One ``ItemCatalog`` is created per process and handed to every component
that needs it. The ``item_name -> completion_rate`` map is read by every
scoring call and replaced wholesale by ingestion; readers share the lock,
a reload holds it exclusively so nobody sees a half-built map.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Dict, List, Mapping, Optional, Sequence

from config import settings
from core.rwlock import AsyncRWLock
from db.repositories import CategoryRepository, ItemRepository, LedgerRepository
from domain.models import ItemDetail, ItemRecord
from services.points import score, validate_rate

_log = logging.getLogger(__name__)


class ItemCatalog:
    def __init__(self, conn: sqlite3.Connection, *, lock: AsyncRWLock | None = None):
        self.conn = conn
        self.items = ItemRepository(conn)
        self.categories = CategoryRepository(conn)
        self.ledger = LedgerRepository(conn)
        self.lock = lock or AsyncRWLock()
        self._rates: Dict[str, float] = {}

    # ---- store operations -------------------------------------------------------------

    def upsert_items(self, records: Sequence[ItemRecord]) -> int:
        return self.items.upsert_items(records)

    def refresh_category_index(self) -> int:
        return self.categories.refresh_index()

    def fetch_item_detail(self, item_name: str) -> Optional[ItemDetail]:
        return self.items.find_detail(item_name)

    def suggest_categories(
        self, partial: str, limit: int = settings.SUGGESTION_LIMIT
    ) -> List[str]:
        return self.categories.suggest(partial, limit)

    suggest_category_names = suggest_categories

    def set_category_clamp(self, category: str, clamp: bool) -> bool:
        changed = self.categories.set_clamp(category, clamp)
        _log.info("Category %r clamp=%s (found=%s)", category, clamp, changed)
        return changed

    def set_item_whitelist(self, item_name: str, whitelist: bool) -> bool:
        changed = self.items.set_whitelist(item_name, whitelist)
        _log.info("Item %r whitelist=%s (found=%s)", item_name, whitelist, changed)
        return changed

    # ---- in-memory lookup -------------------------------------------------------------

    async def lookup_rate(self, item_name: str) -> Optional[float]:
        async with self.lock.read():
            return self._rates.get(item_name)

    async def suggest_item_names(
        self, partial: str, limit: int = settings.SUGGESTION_LIMIT
    ) -> List[str]:
        needle = partial.lower()
        async with self.lock.read():
            hits = [name for name in self._rates if needle in name.lower()]
        return sorted(hits)[:limit]

    async def replace_rates(self, rates: Mapping[str, float]) -> int:
        fresh = dict(rates)
        async with self.lock.write():
            self._rates = fresh
        return len(fresh)

    async def reload_rates(self) -> int:
        """Rebuild the lookup from the store under the exclusive lock."""
        async with self.lock.write():
            self._rates = self.items.list_rates()
            count = len(self._rates)
        _log.info("Rate lookup loaded with %d items", count)
        for name, rate in list(self._rates.items())[:5]:
            _log.debug("Example collection log item: %s - %s%%", name, rate)
        return count

    @property
    def rate_count(self) -> int:
        return len(self._rates)

    # ---- scoring ---------------------------------------------------------------------

    async def score_for_item(self, item_name: str) -> Optional[int]:
        """Points for ``item_name`` or None when the item cannot be scored."""
        rate = await self.lookup_rate(item_name)
        if rate is None:
            return None
        detail = self.fetch_item_detail(item_name)
        if detail is None:
            return None
        try:
            rate = validate_rate(rate)
        except ValueError as e:
            _log.warning("Unscoreable item %r: %s", item_name, e)
            return None
        return score(rate, detail.clamp_eligible)


__all__ = ["ItemCatalog"]
