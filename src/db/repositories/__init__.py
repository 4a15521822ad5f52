"""Repository layer for the item catalog, category index and player ledger.

Concrete implementations operate over a provided sqlite3.Connection. Every
multi-row write runs as one transaction: it either commits as a whole or
leaves the database untouched. When SQLite reports the database as busy the
whole batch is retried from the start (never resumed).
"""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import (
    Callable,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypeVar,
    runtime_checkable,
)

from config import settings
from domain.models import CategoryEntry, ItemDetail, ItemRecord, LedgerEntry
from utils.html_utils import split_categories
from ..errors import PersistenceError

_log = logging.getLogger(__name__)

T = TypeVar("T")

BATCH_RETRY_DELAY = 0.05  # seconds, multiplied by attempt number
# SQLite's default host parameter limit is 999
_IN_CHUNK = 500

_DETAIL_COLUMNS = (
    "item_id, item_name, preferred_name, completion_rate, categories, whitelist, "
    "clamped_category, highest_points, entry_count"
)


def run_batch(
    conn: sqlite3.Connection,
    work: Callable[[sqlite3.Cursor], T],
    *,
    label: str,
    retries: int | None = None,
) -> T:
    """Run ``work`` inside a single transaction, retrying the whole batch on busy errors.

    Synchronous: callers on the event loop (ingestion, recalculation) block
    for the retry delay, at most ``BATCH_RETRY_DELAY * (1 + ... + retries)``
    seconds, which is 0.3s with the default of 3 retries.
    """
    retries = retries if retries is not None else settings.DB_WRITE_RETRIES
    attempt = 0
    while True:
        attempt += 1
        try:
            with conn:
                return work(conn.cursor())
        except sqlite3.OperationalError as e:
            if attempt > retries:
                raise PersistenceError(f"{label} failed after {retries} retries: {e}") from e
            _log.warning("%s attempt %d failed (%s); retrying whole batch", label, attempt, e)
            time.sleep(BATCH_RETRY_DELAY * attempt)
        except sqlite3.Error as e:
            raise PersistenceError(f"{label} failed: {e}") from e


def _like_pattern(needle: str) -> str:
    escaped = needle.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _detail_from_row(row: Sequence) -> ItemDetail:
    return ItemDetail(
        item_id=int(row[0]),
        item_name=row[1],
        preferred_name=row[2],
        completion_rate=float(row[3]),
        categories=tuple(split_categories(row[4] or "")),
        whitelist=bool(row[5]),
        clamped_category=bool(row[6]),
        highest_points=int(row[7] or 0),
        entry_count=int(row[8] or 0),
    )


def _chunks(values: Sequence[str], size: int | None = None) -> Iterable[Sequence[str]]:
    size = size or _IN_CHUNK
    for start in range(0, len(values), size):
        yield values[start : start + size]


@runtime_checkable
class ItemReadRepository(Protocol):
    def list_rates(self) -> dict[str, float]: ...  # pragma: no cover
    def get_by_name(self, item_name: str) -> Optional[ItemRecord]: ...  # pragma: no cover
    def find_detail(self, item_name: str) -> Optional[ItemDetail]: ...  # pragma: no cover
    def suggest_names(self, partial: str, limit: int = ...) -> List[str]: ...  # pragma: no cover


@runtime_checkable
class ItemWriteRepository(Protocol):
    def upsert_items(self, records: Sequence[ItemRecord]) -> int: ...  # pragma: no cover
    def set_whitelist(self, item_name: str, whitelist: bool) -> bool: ...  # pragma: no cover


@runtime_checkable
class CategoryReadRepository(Protocol):
    def get(self, category: str) -> Optional[CategoryEntry]: ...  # pragma: no cover
    def suggest(self, partial: str, limit: int = ...) -> List[str]: ...  # pragma: no cover


@runtime_checkable
class CategoryWriteRepository(Protocol):
    def refresh_index(self) -> int: ...  # pragma: no cover
    def set_clamp(self, category: str, clamp: bool) -> bool: ...  # pragma: no cover


# ---- Concrete Implementations ----


class _BaseRepo:
    def __init__(self, conn: sqlite3.Connection):
        self._c = conn


class ItemRepository(ItemReadRepository, ItemWriteRepository, _BaseRepo):
    def upsert_items(self, records: Sequence[ItemRecord]) -> int:
        """Insert or update every record by item_id as one atomic batch.

        ``whitelist`` is never cleared by ingestion. A stored row that holds a
        record's name under a different id is dropped first so names stay unique,
        and its whitelist flag moves to the new id. Within one batch the last
        record for a name wins.
        """
        rows = [
            (r.item_id, r.item_name, r.preferred_name, r.completion_rate, r.categories_text)
            for r in records
        ]

        def work(cur: sqlite3.Cursor) -> int:
            dropped = 0
            for row in rows:
                cur.execute(
                    "SELECT MAX(whitelist) FROM item WHERE item_name=? AND item_id<>?",
                    (row[1], row[0]),
                )
                carried = cur.fetchone()[0]
                cur.execute("DELETE FROM item WHERE item_name=? AND item_id<>?", (row[1], row[0]))
                dropped += max(cur.rowcount, 0)
                cur.execute(
                    """
                    INSERT INTO item(item_id, item_name, preferred_name, completion_rate, categories)
                    VALUES(?,?,?,?,?)
                    ON CONFLICT(item_id) DO UPDATE SET
                        item_name=excluded.item_name,
                        preferred_name=excluded.preferred_name,
                        completion_rate=excluded.completion_rate,
                        categories=excluded.categories
                    """,
                    row,
                )
                if carried:
                    cur.execute("UPDATE item SET whitelist=1 WHERE item_id=?", (row[0],))
            if dropped:
                _log.info("Dropped %d item rows whose name moved to a new id", dropped)
            return len(rows)

        return run_batch(self._c, work, label="item upsert")

    def list_rates(self) -> dict[str, float]:
        cur = self._c.cursor()
        cur.execute("SELECT item_name, completion_rate FROM item")
        return {name: float(rate) for name, rate in cur.fetchall()}

    def get_by_name(self, item_name: str) -> Optional[ItemRecord]:
        cur = self._c.cursor()
        cur.execute(
            "SELECT item_id, item_name, preferred_name, completion_rate, categories, whitelist"
            " FROM item WHERE item_name=?",
            (item_name,),
        )
        row = cur.fetchone()
        if not row:
            return None
        return ItemRecord(
            item_id=int(row[0]),
            item_name=row[1],
            preferred_name=row[2],
            completion_rate=float(row[3]),
            categories=tuple(split_categories(row[4] or "")),
            whitelist=bool(row[5]),
        )

    def find_detail(self, item_name: str) -> Optional[ItemDetail]:
        """Exact name match first, then the lowest-id case-insensitive substring match."""
        cur = self._c.cursor()
        cur.execute(f"SELECT {_DETAIL_COLUMNS} FROM v_item_detail WHERE item_name=?", (item_name,))
        row = cur.fetchone()
        if row is None:
            cur.execute(
                f"SELECT {_DETAIL_COLUMNS} FROM v_item_detail"
                " WHERE lower(item_name) LIKE ? ESCAPE '\\' ORDER BY item_id LIMIT 1",
                (_like_pattern(item_name),),
            )
            row = cur.fetchone()
            if row is not None:
                _log.debug("Detail for %r resolved by substring to %r", item_name, row[1])
        return _detail_from_row(row) if row else None

    def suggest_names(self, partial: str, limit: int = settings.SUGGESTION_LIMIT) -> List[str]:
        cur = self._c.cursor()
        cur.execute(
            "SELECT item_name FROM item WHERE lower(item_name) LIKE ? ESCAPE '\\'"
            " ORDER BY item_name LIMIT ?",
            (_like_pattern(partial), limit),
        )
        return [r[0] for r in cur.fetchall()]

    def set_whitelist(self, item_name: str, whitelist: bool) -> bool:
        def work(cur: sqlite3.Cursor) -> int:
            cur.execute(
                "UPDATE item SET whitelist=? WHERE item_name=?", (1 if whitelist else 0, item_name)
            )
            return cur.rowcount

        return run_batch(self._c, work, label="whitelist toggle") > 0

    def select_candidates(self, clamp_ceiling: int, rate_threshold: float) -> List[ItemDetail]:
        """Items with ledger entries whose recorded points may be stale.

        An item qualifies when it sits in a clamped category and some player
        holds more than ``clamp_ceiling`` for it, when it is whitelisted, or
        when its completion rate is below ``rate_threshold``.
        """
        cur = self._c.cursor()
        cur.execute(
            f"""
            SELECT {_DETAIL_COLUMNS} FROM v_item_detail
            WHERE entry_count > 0
              AND ((clamped_category = 1 AND highest_points > ?)
                   OR whitelist = 1
                   OR completion_rate < ?)
            ORDER BY completion_rate, item_id
            """,
            (clamp_ceiling, rate_threshold),
        )
        return [_detail_from_row(r) for r in cur.fetchall()]


class CategoryRepository(CategoryReadRepository, CategoryWriteRepository, _BaseRepo):
    def refresh_index(self) -> int:
        """Explode item category strings into the index; return the number of new categories.

        Existing clamp flags are left untouched. Item membership links are rebuilt.
        """

        def work(cur: sqlite3.Cursor) -> int:
            cur.execute("SELECT item_id, categories FROM item")
            links: List[Tuple[int, str]] = []
            for item_id, raw in cur.fetchall():
                links.extend((int(item_id), c) for c in split_categories(raw or ""))
            distinct = sorted({c for _, c in links})
            cur.execute("SELECT COUNT(*) FROM category")
            before = int(cur.fetchone()[0])
            cur.executemany(
                "INSERT INTO category(category) VALUES(?) ON CONFLICT(category) DO NOTHING",
                [(c,) for c in distinct],
            )
            cur.execute("DELETE FROM item_category")
            cur.executemany(
                "INSERT OR IGNORE INTO item_category(item_id, category) VALUES(?,?)", links
            )
            cur.execute("SELECT COUNT(*) FROM category")
            return int(cur.fetchone()[0]) - before

        return run_batch(self._c, work, label="category index refresh")

    def get(self, category: str) -> Optional[CategoryEntry]:
        cur = self._c.cursor()
        cur.execute("SELECT category, clamp FROM category WHERE category=?", (category,))
        row = cur.fetchone()
        return CategoryEntry(row[0], bool(row[1])) if row else None

    def list_all(self) -> List[CategoryEntry]:
        cur = self._c.cursor()
        cur.execute("SELECT category, clamp FROM category ORDER BY category")
        return [CategoryEntry(r[0], bool(r[1])) for r in cur.fetchall()]

    def list_for_item(self, item_id: int) -> List[str]:
        cur = self._c.cursor()
        cur.execute(
            "SELECT category FROM item_category WHERE item_id=? ORDER BY category", (item_id,)
        )
        return [r[0] for r in cur.fetchall()]

    def suggest(self, partial: str, limit: int = settings.SUGGESTION_LIMIT) -> List[str]:
        cur = self._c.cursor()
        cur.execute(
            "SELECT category FROM category WHERE lower(category) LIKE ? ESCAPE '\\'"
            " ORDER BY category LIMIT ?",
            (_like_pattern(partial), limit),
        )
        return [r[0] for r in cur.fetchall()]

    def set_clamp(self, category: str, clamp: bool) -> bool:
        def work(cur: sqlite3.Cursor) -> int:
            cur.execute(
                "UPDATE category SET clamp=? WHERE category=?", (1 if clamp else 0, category)
            )
            return cur.rowcount

        return run_batch(self._c, work, label="clamp toggle") > 0


class LedgerRepository(_BaseRepo):
    """Player ledger entries (one per player/item completion)."""

    def add_entry(self, player_id: str, item_name: str, points: int) -> int:
        def work(cur: sqlite3.Cursor) -> int:
            cur.execute(
                "INSERT INTO collection_log_entry(player_id, item_name, points) VALUES(?,?,?)",
                (player_id, item_name, points),
            )
            return int(cur.lastrowid)

        return run_batch(self._c, work, label="ledger insert")

    def get(self, entry_id: int) -> Optional[LedgerEntry]:
        cur = self._c.cursor()
        cur.execute(
            "SELECT id, player_id, item_name, points FROM collection_log_entry WHERE id=?",
            (entry_id,),
        )
        row = cur.fetchone()
        return LedgerEntry(*row) if row else None

    def list_for_items(self, item_names: Sequence[str]) -> List[LedgerEntry]:
        names = list(dict.fromkeys(item_names))
        out: List[LedgerEntry] = []
        cur = self._c.cursor()
        for chunk in _chunks(names):
            marks = ",".join("?" for _ in chunk)
            cur.execute(
                "SELECT id, player_id, item_name, points FROM collection_log_entry"
                f" WHERE item_name IN ({marks}) ORDER BY id",
                tuple(chunk),
            )
            out.extend(LedgerEntry(*r) for r in cur.fetchall())
        return out

    def apply_corrections(self, updates: Sequence[Tuple[int, int]]) -> int:
        """Persist (entry_id, new_points) pairs as one atomic batch."""
        if not updates:
            return 0

        def work(cur: sqlite3.Cursor) -> int:
            cur.executemany(
                "UPDATE collection_log_entry SET points=? WHERE id=?",
                [(points, entry_id) for entry_id, points in updates],
            )
            return len(updates)

        return run_batch(self._c, work, label="ledger corrections")


class RankRepository(_BaseRepo):
    """Running point totals per player."""

    def add_points(self, player_id: str, display_name: str, delta: int) -> int:
        def work(cur: sqlite3.Cursor) -> int:
            cur.execute(
                """
                INSERT INTO player_rank(player_id, display_name, points) VALUES(?,?,?)
                ON CONFLICT(player_id) DO UPDATE SET
                    display_name=excluded.display_name,
                    points=player_rank.points + excluded.points
                """,
                (player_id, display_name, delta),
            )
            cur.execute("SELECT points FROM player_rank WHERE player_id=?", (player_id,))
            return int(cur.fetchone()[0])

        return run_batch(self._c, work, label="rank update")

    def get(self, player_id: str) -> Optional[Tuple[str, Optional[str], int]]:
        cur = self._c.cursor()
        cur.execute(
            "SELECT player_id, display_name, points FROM player_rank WHERE player_id=?",
            (player_id,),
        )
        row = cur.fetchone()
        return (row[0], row[1], int(row[2])) if row else None


__all__ = [
    "run_batch",
    "ItemRepository",
    "CategoryRepository",
    "LedgerRepository",
    "RankRepository",
    # Protocols
    "ItemReadRepository",
    "ItemWriteRepository",
    "CategoryReadRepository",
    "CategoryWriteRepository",
]
