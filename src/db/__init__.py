"""Database package exposing schema helpers and repositories.

Public API:
 - apply_schema / connect / get_existing_tables
 - ItemRepository, CategoryRepository, LedgerRepository, RankRepository
 - PersistenceError
"""

from .schema import apply_schema, connect, get_existing_tables, SCHEMA_VERSION  # noqa: F401
from .errors import PersistenceError  # noqa: F401
from .repositories import (  # noqa: F401
    run_batch,
    ItemRepository,
    CategoryRepository,
    LedgerRepository,
    RankRepository,
    ItemReadRepository,
    ItemWriteRepository,
    CategoryReadRepository,
    CategoryWriteRepository,
)

__all__ = [
    "apply_schema",
    "connect",
    "get_existing_tables",
    "SCHEMA_VERSION",
    "PersistenceError",
    "run_batch",
    # Repositories
    "ItemRepository",
    "CategoryRepository",
    "LedgerRepository",
    "RankRepository",
    # Protocol exports
    "ItemReadRepository",
    "ItemWriteRepository",
    "CategoryReadRepository",
    "CategoryWriteRepository",
]
