"""Recalculation of previously awarded collection log points.

Clamp toggles, whitelist changes and fresh completion rates can leave the
points stored on ledger entries out of date. A run:

  1. selects candidate items (owned by someone, and either clamped with a
     recorded score above the ceiling, whitelisted, or rarer than 10%);
  2. re-scores each candidate with its current clamp eligibility;
  3. diffs the new score against every ledger entry for those items;
  4. applies a correction only when it moves toward the fair value:
     lowering a clamp-eligible item, or raising an item that is not;
  5. commits all corrections as one batch, then pushes each player's
     aggregate delta to the ranking ledger, pausing between calls. A failed
     ranking call does not stop the others; its delta is kept in
     ``failed_players`` since a re-run will not find it again.

A second run with no intervening changes corrects nothing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from config import settings
from domain.models import ItemDetail
from services.catalog import ItemCatalog
from services.points import CLAMP_CEILING, score, validate_rate
from services.ranking import RankingLedger

_log = logging.getLogger(__name__)

RECALC_RATE_THRESHOLD = 10.0

Sleeper = Callable[[float], Awaitable[None]]


def should_apply(delta: int, clamp_eligible: bool) -> bool:
    """Clamped items may only go down, unclamped items may only go up."""
    return (delta < 0 and clamp_eligible) or (delta > 0 and not clamp_eligible)


@dataclass
class ItemChange:
    item_id: int
    item_name: str
    completion_rate: float
    clamp_eligible: bool
    old_points: int  # highest points previously awarded
    new_points: int
    affected: int = 0

    @property
    def delta(self) -> int:
        return self.new_points - self.old_points


@dataclass
class PlayerChange:
    player_id: str
    display_name: str
    delta: int = 0


@dataclass
class RecalculationReport:
    candidates: int = 0
    entries_examined: int = 0
    corrected_entries: int = 0
    items: List[ItemChange] = field(default_factory=list)
    players: List[PlayerChange] = field(default_factory=list)
    # players whose ranking update raised; their ledger entries are already corrected
    failed_players: List[PlayerChange] = field(default_factory=list)

    @property
    def nothing_changed(self) -> bool:
        return self.corrected_entries == 0

    @property
    def ranking_complete(self) -> bool:
        return not self.failed_players

    @property
    def affected_items(self) -> List[ItemChange]:
        return [i for i in self.items if i.affected > 0]

    def render(self) -> str:
        if self.nothing_changed:
            return "Nothing to report: no recorded points needed correcting."
        lines = [
            "Recalculation Results (only highest points previously awarded listed):",
            f"{self.corrected_entries} total records affected!",
        ]
        for item in self.affected_items:
            lines.append(
                f"{item.item_name} ({item.item_id}): from {item.old_points} to "
                f"{item.new_points} points ({item.delta:+d}), {item.affected} clogs affected"
            )
        lines.append("Affected users:")
        for p in self.players:
            lines.append(f"{p.display_name} ({p.player_id}): {p.delta:+d} points")
        if self.failed_players:
            lines.append("Ranking update FAILED, apply these deltas manually:")
            for p in self.failed_players:
                lines.append(f"{p.display_name} ({p.player_id}): {p.delta:+d} points")
        return "\n".join(lines)


class ReconciliationEngine:
    def __init__(
        self,
        catalog: ItemCatalog,
        ranking: RankingLedger,
        *,
        pacing_seconds: float | None = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self._catalog = catalog
        self._ranking = ranking
        self._pacing = settings.LEDGER_PACING_SECONDS if pacing_seconds is None else pacing_seconds
        self._sleep = sleep

    def select_candidates(self) -> List[ItemDetail]:
        return self._catalog.items.select_candidates(CLAMP_CEILING, RECALC_RATE_THRESHOLD)

    def _rescore(self, detail: ItemDetail) -> Optional[ItemChange]:
        try:
            rate = validate_rate(detail.completion_rate)
        except ValueError as e:
            _log.warning("Skipping %r during recalculation: %s", detail.item_name, e)
            return None
        return ItemChange(
            item_id=detail.item_id,
            item_name=detail.item_name,
            completion_rate=rate,
            clamp_eligible=detail.clamp_eligible,
            old_points=detail.highest_points,
            new_points=score(rate, detail.clamp_eligible),
        )

    async def run(self) -> RecalculationReport:
        report = RecalculationReport()
        candidates = self.select_candidates()
        report.candidates = len(candidates)
        _log.info("Found %d relevant recalculation records", len(candidates))
        changes: Dict[str, ItemChange] = {}
        for detail in candidates:
            change = self._rescore(detail)
            if change is not None:
                changes[change.item_name] = change
                report.items.append(change)
        if not changes:
            return report

        entries = self._catalog.ledger.list_for_items(list(changes))
        report.entries_examined = len(entries)
        _log.info("Found %d relevant clog records", len(entries))

        updates: List[Tuple[int, int]] = []
        player_deltas: Dict[str, int] = {}
        for entry in entries:
            change = changes[entry.item_name]
            delta = change.new_points - entry.points_awarded
            if not should_apply(delta, change.clamp_eligible):
                continue
            _log.info(
                "User %s point change from %s: %+d", entry.player_id, entry.item_name, delta
            )
            updates.append((entry.id, change.new_points))
            change.affected += 1
            player_deltas[entry.player_id] = player_deltas.get(entry.player_id, 0) + delta

        report.corrected_entries = self._catalog.ledger.apply_corrections(updates)
        _log.info("Total edited record count: %d", report.corrected_entries)
        if report.nothing_changed:
            return report

        first_call = True
        for player_id, delta in player_deltas.items():
            try:
                name = await self._ranking.display_name(player_id)
            except Exception:
                _log.exception("Display name lookup failed for %s", player_id)
                name = player_id
            report.players.append(PlayerChange(player_id, name, delta))
            if delta == 0:
                continue
            if not first_call and self._pacing > 0:
                await self._sleep(self._pacing)
            first_call = False
            try:
                await self._ranking.apply_point_delta(player_id, name, delta)
            except Exception:
                _log.exception("Ranking update failed for %s (%s): %+d", name, player_id, delta)
                report.failed_players.append(PlayerChange(player_id, name, delta))
        if report.failed_players:
            _log.error(
                "%d ranking updates failed; deltas listed in the report",
                len(report.failed_players),
            )
        return report

    run_recalculation = run


__all__ = [
    "ReconciliationEngine",
    "RecalculationReport",
    "ItemChange",
    "PlayerChange",
    "should_apply",
    "RECALC_RATE_THRESHOLD",
]
