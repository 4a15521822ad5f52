"""CLI entry point for collection log points ingestion, scoring and recalculation."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sqlite3
from typing import Any

from config import settings
from core.async_http import FetchError
from db.errors import PersistenceError
from db.schema import connect
from parsing.errors import ParseError
from services.catalog import ItemCatalog
from services.ingestion import IngestionPipeline
from services.points import CLAMP_CEILING
from services.ranking import SqliteRankingLedger
from services.reconciliation import ReconciliationEngine

_log = logging.getLogger("clog_points")


def _open(args: argparse.Namespace) -> sqlite3.Connection:
    try:
        db_dir = os.path.dirname(args.db)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        return connect(args.db)
    except (OSError, sqlite3.Error) as e:
        raise PersistenceError(f"cannot open database {args.db}: {e}") from e


def _emit(args: argparse.Namespace, payload: Any, text: str) -> None:
    if args.json:
        print(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        print(text)


def _on_off(value: str) -> bool:
    return value.lower() in {"on", "true", "1", "yes"}


async def cmd_ingest(args: argparse.Namespace, catalog: ItemCatalog) -> int:
    report = await IngestionPipeline(catalog, use_cache=args.cache).run()
    _emit(
        args,
        {
            "ingested": report.ingested,
            "skipped": report.skipped,
            "duplicates": report.duplicates,
            "new_categories": report.new_categories,
            "diagnostics": report.diagnostics,
        },
        f"Ingested {report.ingested} items ({report.skipped} rows skipped, "
        f"{report.new_categories} new categories)",
    )
    return 0


async def cmd_score(args: argparse.Namespace, catalog: ItemCatalog) -> int:
    await catalog.reload_rates()
    points = await catalog.score_for_item(args.item)
    _emit(
        args,
        {"item": args.item, "points": points},
        f"{args.item}: {points} points" if points is not None else f"{args.item}: not scoreable",
    )
    return 0 if points is not None else 1


async def cmd_suggest_items(args: argparse.Namespace, catalog: ItemCatalog) -> int:
    await catalog.reload_rates()
    names = await catalog.suggest_item_names(args.partial)
    _emit(args, names, "\n".join(names))
    return 0


async def cmd_suggest_categories(args: argparse.Namespace, catalog: ItemCatalog) -> int:
    names = catalog.suggest_category_names(args.partial)
    _emit(args, names, "\n".join(names))
    return 0


async def cmd_clamp(args: argparse.Namespace, catalog: ItemCatalog) -> int:
    clamp = _on_off(args.state)
    found = catalog.set_category_clamp(args.category, clamp)
    if not found:
        _emit(args, {"category": args.category, "found": False}, f"Unknown category {args.category}")
        return 1
    text = (
        f"{args.category} is now clamped! Items in this category give at most "
        f"{CLAMP_CEILING} points."
        if clamp
        else f"{args.category} is now unclamped! Items in this category can go beyond "
        f"{CLAMP_CEILING} points!"
    )
    _emit(args, {"category": args.category, "clamp": clamp, "found": True}, text)
    return 0


async def cmd_whitelist(args: argparse.Namespace, catalog: ItemCatalog) -> int:
    whitelist = _on_off(args.state)
    found = catalog.set_item_whitelist(args.item, whitelist)
    if not found:
        _emit(args, {"item": args.item, "found": False}, f"Unknown item {args.item}")
        return 1
    state = "whitelisted" if whitelist else "no longer whitelisted"
    _emit(args, {"item": args.item, "whitelist": whitelist, "found": True}, f"{args.item} is {state}")
    return 0


async def cmd_recalculate(args: argparse.Namespace, catalog: ItemCatalog) -> int:
    engine = ReconciliationEngine(
        catalog, SqliteRankingLedger(catalog.conn), pacing_seconds=args.pacing
    )
    report = await engine.run_recalculation()
    _emit(
        args,
        {
            "candidates": report.candidates,
            "entries_examined": report.entries_examined,
            "corrected_entries": report.corrected_entries,
            "items": [
                {
                    "item_id": i.item_id,
                    "item_name": i.item_name,
                    "old_points": i.old_points,
                    "new_points": i.new_points,
                    "affected": i.affected,
                }
                for i in report.affected_items
            ],
            "players": [
                {"player_id": p.player_id, "display_name": p.display_name, "delta": p.delta}
                for p in report.players
            ],
            "failed_players": [
                {"player_id": p.player_id, "display_name": p.display_name, "delta": p.delta}
                for p in report.failed_players
            ],
        },
        report.render(),
    )
    return 0 if report.ranking_complete else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="clog-points")
    p.add_argument("--db", default=settings.DB_PATH, help="SQLite database path")
    p.add_argument("--json", action="store_true", help="Emit JSON output")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Fetch the wiki rarity table and refresh the catalog")
    ingest.add_argument("--cache", action="store_true", help="Reuse a cached wiki response")
    ingest.set_defaults(func=cmd_ingest)

    score = sub.add_parser("score", help="Points for one item")
    score.add_argument("item")
    score.set_defaults(func=cmd_score)

    items = sub.add_parser("suggest-items", help="Item names containing PARTIAL")
    items.add_argument("partial")
    items.set_defaults(func=cmd_suggest_items)

    cats = sub.add_parser("suggest-categories", help="Category names containing PARTIAL")
    cats.add_argument("partial")
    cats.set_defaults(func=cmd_suggest_categories)

    clamp = sub.add_parser("clamp", help="Clamp or unclamp a category")
    clamp.add_argument("category")
    clamp.add_argument("state", choices=["on", "off"])
    clamp.set_defaults(func=cmd_clamp)

    wl = sub.add_parser("whitelist", help="Whitelist an item against category clamps")
    wl.add_argument("item")
    wl.add_argument("state", choices=["on", "off"])
    wl.set_defaults(func=cmd_whitelist)

    recalc = sub.add_parser("recalculate", help="Re-score stale items and correct awarded points")
    recalc.add_argument(
        "--pacing",
        type=float,
        default=settings.LEDGER_PACING_SECONDS,
        help="Seconds between ranking ledger updates",
    )
    recalc.set_defaults(func=cmd_recalculate)
    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    conn: sqlite3.Connection | None = None
    try:
        conn = _open(args)
        return asyncio.run(args.func(args, ItemCatalog(conn)))
    except (FetchError, ParseError, PersistenceError) as e:
        _log.error("%s failed: %s", args.command, e)
        return 1
    finally:
        if conn is not None:
            conn.close()


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
