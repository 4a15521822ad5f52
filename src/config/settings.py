"""Global configuration and constants for the collection log points service."""

from __future__ import annotations

import os
from typing import Final

WIKI_API_URL: Final = os.environ.get(
    "CLOGPOINTS_WIKI_API_URL", "https://oldschool.runescape.wiki/api.php"
)
WIKI_TABLE_PAGE: Final = "Collection_log/Table"
DEFAULT_USER_AGENT: Final = "KittyScape Loot Bot/1.0"
DEFAULT_TIMEOUT: Final = 15  # seconds
DEFAULT_RETRIES: Final = 3
DEFAULT_BACKOFF_FACTOR: Final = 0.6
DATA_DIR: Final = os.environ.get("CLOGPOINTS_DATA_DIR", "data")
DB_PATH: Final = os.environ.get("CLOGPOINTS_DB_PATH", os.path.join(DATA_DIR, "clog_points.sqlite"))

# Whole-batch retries when SQLite reports the database as locked/busy
DB_WRITE_RETRIES: Final = 3

# Delay between successive ranking ledger calls during recalculation
LEDGER_PACING_SECONDS: Final = float(os.environ.get("CLOGPOINTS_LEDGER_PACING", "1.0"))

SUGGESTION_LIMIT: Final = 25
CACHE_TTL: Final = 3600  # seconds; wiki table changes slowly
