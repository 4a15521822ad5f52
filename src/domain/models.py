"""Domain models for the collection log points service."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple


@dataclass(slots=True)
class ItemRecord:
    item_id: int
    item_name: str
    preferred_name: str
    completion_rate: float
    categories: Tuple[str, ...] = field(default_factory=tuple)
    whitelist: bool = False

    @property
    def categories_text(self) -> str:
        """Comma-joined form persisted alongside the item."""
        return ", ".join(self.categories)


@dataclass(slots=True)
class CategoryEntry:
    category: str
    clamp: bool = False


@dataclass(frozen=True)
class LedgerEntry:
    """One player's completion of one item and the points last awarded for it."""

    id: int
    player_id: str
    item_name: str
    points_awarded: int


@dataclass(frozen=True)
class ItemDetail:
    """Scoring metadata for a stored item.

    Attributes:
        clamped_category: True when any of the item's categories is clamped.
        highest_points: Highest points currently recorded for the item across all players.
        entry_count: Number of ledger entries (player completions) for the item.
    """

    item_id: int
    item_name: str
    preferred_name: str
    completion_rate: float
    categories: Tuple[str, ...]
    whitelist: bool
    clamped_category: bool
    highest_points: int = 0
    entry_count: int = 0

    @property
    def clamp_eligible(self) -> bool:
        return self.clamped_category and not self.whitelist


__all__ = ["ItemRecord", "CategoryEntry", "LedgerEntry", "ItemDetail"]
