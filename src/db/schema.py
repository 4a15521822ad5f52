"""SQLite Schema Definitions

Tables:
 - item: one row per collection log item, keyed by the wiki item id, unique by name.
   ``categories`` keeps the comma-joined label string exactly as ingested.
 - category: distinct category labels with their clamp flag.
 - item_category: item -> category membership, rebuilt from ``item.categories``.
 - collection_log_entry: player ledger (one row per player/item completion).
 - player_rank: running point totals used by the bundled ranking ledger.

Foreign keys are enforced when the caller enables PRAGMA foreign_keys=ON.
"""

from __future__ import annotations
import sqlite3

SCHEMA_VERSION = 1

# DDL statements (ordered for FK dependencies)
DDL: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS schema_meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    );
    """.strip(),
    """
    CREATE TABLE IF NOT EXISTS item (
        item_id INTEGER PRIMARY KEY,
        item_name TEXT NOT NULL UNIQUE,
        preferred_name TEXT NOT NULL,
        completion_rate REAL NOT NULL CHECK (completion_rate > 0 AND completion_rate <= 100),
        categories TEXT NOT NULL DEFAULT '',
        whitelist INTEGER NOT NULL DEFAULT 0
    );
    """.strip(),
    """
    CREATE TABLE IF NOT EXISTS category (
        category TEXT PRIMARY KEY,
        clamp INTEGER NOT NULL DEFAULT 0
    );
    """.strip(),
    """
    CREATE TABLE IF NOT EXISTS item_category (
        item_id INTEGER NOT NULL REFERENCES item(item_id) ON DELETE CASCADE,
        category TEXT NOT NULL REFERENCES category(category) ON DELETE CASCADE,
        PRIMARY KEY (item_id, category)
    );
    """.strip(),
    """
    CREATE TABLE IF NOT EXISTS collection_log_entry (
        id INTEGER PRIMARY KEY,
        player_id TEXT NOT NULL,
        item_name TEXT NOT NULL,
        points INTEGER NOT NULL,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    );
    """.strip(),
    """
    CREATE TABLE IF NOT EXISTS player_rank (
        player_id TEXT PRIMARY KEY,
        display_name TEXT,
        points INTEGER NOT NULL DEFAULT 0
    );
    """.strip(),
    # Scoring metadata per item: clamp membership plus ledger aggregates
    """
    CREATE VIEW IF NOT EXISTS v_item_detail AS
    SELECT
        i.item_id,
        i.item_name,
        i.preferred_name,
        i.completion_rate,
        i.categories,
        i.whitelist,
        EXISTS (
            SELECT 1 FROM item_category ic
            JOIN category c ON c.category = ic.category
            WHERE ic.item_id = i.item_id AND c.clamp = 1
        ) AS clamped_category,
        COALESCE(
            (SELECT MAX(e.points) FROM collection_log_entry e WHERE e.item_name = i.item_name), 0
        ) AS highest_points,
        (SELECT COUNT(*) FROM collection_log_entry e WHERE e.item_name = i.item_name) AS entry_count
    FROM item i;
    """.strip(),
    "CREATE INDEX IF NOT EXISTS idx_item_category_category ON item_category(category)",
    "CREATE INDEX IF NOT EXISTS idx_entry_item_name ON collection_log_entry(item_name)",
    "CREATE INDEX IF NOT EXISTS idx_entry_player ON collection_log_entry(player_id)",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    cur = conn.cursor()
    for stmt in DDL:
        cur.execute(stmt)
    cur.execute(
        "INSERT OR REPLACE INTO schema_meta(key, value) VALUES ('schema_version', ?)",
        (str(SCHEMA_VERSION),),
    )
    conn.commit()


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    cur = conn.cursor()
    cur.execute("SELECT name FROM sqlite_master WHERE type='table'")
    return sorted(r[0] for r in cur.fetchall())


def connect(path: str) -> sqlite3.Connection:
    """Open a connection with foreign keys enabled and the schema applied."""
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys=ON")
    apply_schema(conn)
    return conn
