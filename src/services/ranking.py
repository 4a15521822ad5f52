"""Ranking ledger collaborator used by recalculation.

The ledger that displays player standings lives outside this package; the
engine only needs to resolve a player's display name and push a point delta.
``SqliteRankingLedger`` keeps running totals in the ``player_rank`` table and
is what the CLI wires in.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Protocol, runtime_checkable

from db.repositories import RankRepository

_log = logging.getLogger(__name__)


@runtime_checkable
class RankingLedger(Protocol):
    async def display_name(self, player_id: str) -> str: ...  # pragma: no cover

    async def apply_point_delta(
        self, player_id: str, display_name: str, delta: int
    ) -> None: ...  # pragma: no cover


class SqliteRankingLedger:
    def __init__(self, conn: sqlite3.Connection):
        self._ranks = RankRepository(conn)

    async def display_name(self, player_id: str) -> str:
        row = self._ranks.get(player_id)
        if row and row[1]:
            return row[1]
        return player_id

    async def apply_point_delta(self, player_id: str, display_name: str, delta: int) -> None:
        total = self._ranks.add_points(player_id, display_name, delta)
        _log.info("Ranking %s (%s): %+d -> %d", display_name, player_id, delta, total)


__all__ = ["RankingLedger", "SqliteRankingLedger"]
