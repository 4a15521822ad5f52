"""CLI round trips against a database file on disk."""

from __future__ import annotations

import json
from pathlib import Path

import httpx

import main
from core import async_http
from db.repositories import LedgerRepository, RankRepository
from db.schema import connect
from services.catalog import ItemCatalog
from services.points import score
from tests.factories import SAMPLE_TABLE, envelope, item, seed


def _seed_db(tmp_path: Path) -> str:
    db_path = str(tmp_path / "clog.sqlite")
    conn = connect(db_path)
    try:
        seed(
            ItemCatalog(conn),
            [
                item(1, "Dragon pickaxe", 0.8, ["Wilderness bosses"]),
                item(2, "Pet snakeling", 0.5, ["Zulrah", "Pets"]),
                item(3, "Bandos chestplate", 50.0, ["General Graardor"]),
            ],
        )
    finally:
        conn.close()
    return db_path


def _json_out(capsys):
    return json.loads(capsys.readouterr().out)


def test_score_prints_points(tmp_path, capsys):
    db = _seed_db(tmp_path)
    assert main.main(["--db", db, "--json", "score", "Bandos chestplate"]) == 0
    assert _json_out(capsys) == {"item": "Bandos chestplate", "points": 75}


def test_score_unknown_item_exits_nonzero(tmp_path, capsys):
    db = _seed_db(tmp_path)
    assert main.main(["--db", db, "score", "Twisted bow"]) == 1
    assert "not scoreable" in capsys.readouterr().out


def test_suggest_items_and_categories(tmp_path, capsys):
    db = _seed_db(tmp_path)
    assert main.main(["--db", db, "--json", "suggest-items", "dragon"]) == 0
    assert _json_out(capsys) == ["Dragon pickaxe"]
    assert main.main(["--db", db, "--json", "suggest-categories", "ZUL"]) == 0
    assert _json_out(capsys) == ["Zulrah"]


def test_clamp_then_score_uses_ceiling(tmp_path, capsys):
    db = _seed_db(tmp_path)
    assert main.main(["--db", db, "clamp", "Pets", "on"]) == 0
    assert "is now clamped" in capsys.readouterr().out
    assert main.main(["--db", db, "--json", "score", "Pet snakeling"]) == 0
    assert _json_out(capsys)["points"] == 3000
    assert main.main(["--db", db, "whitelist", "Pet snakeling", "on"]) == 0
    capsys.readouterr()
    assert main.main(["--db", db, "--json", "score", "Pet snakeling"]) == 0
    assert _json_out(capsys)["points"] == 8485


def test_toggles_on_unknown_names_fail(tmp_path, capsys):
    db = _seed_db(tmp_path)
    assert main.main(["--db", db, "clamp", "Nowhere", "on"]) == 1
    assert main.main(["--db", db, "whitelist", "Nothing", "off"]) == 1
    out = capsys.readouterr().out
    assert "Unknown category Nowhere" in out
    assert "Unknown item Nothing" in out


def test_recalculate_json_report(tmp_path, capsys):
    db = _seed_db(tmp_path)
    conn = connect(db)
    try:
        LedgerRepository(conn).add_entry("p1", "Dragon pickaxe", score(0.8, False))
        ItemCatalog(conn).set_category_clamp("Wilderness bosses", True)
    finally:
        conn.close()

    assert main.main(["--db", db, "--json", "recalculate", "--pacing", "0"]) == 0
    payload = _json_out(capsys)
    assert payload["corrected_entries"] == 1
    assert payload["items"][0]["item_name"] == "Dragon pickaxe"
    assert payload["items"][0]["new_points"] == 3000
    assert payload["players"] == [
        {"player_id": "p1", "display_name": "p1", "delta": 3000 - score(0.8, False)}
    ]

    conn = connect(db)
    try:
        assert RankRepository(conn).get("p1")[2] == 3000 - score(0.8, False)
    finally:
        conn.close()

    assert main.main(["--db", db, "recalculate", "--pacing", "0"]) == 0
    assert "Nothing to report" in capsys.readouterr().out


def test_ingest_command_with_mocked_wiki(tmp_path, capsys, monkeypatch):
    body = envelope(SAMPLE_TABLE)
    monkeypatch.setattr(
        async_http,
        "make_client",
        lambda **_: httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text=body))
        ),
    )
    db = str(tmp_path / "nested" / "clog.sqlite")
    assert main.main(["--db", db, "--json", "ingest"]) == 0
    payload = _json_out(capsys)
    assert payload["ingested"] == 4
    assert payload["skipped"] == 0
    assert main.main(["--db", db, "--json", "score", "3rd age longsword"]) == 0
    assert _json_out(capsys)["points"] == score(0.1, False)


def test_ingest_failure_exits_nonzero(tmp_path, monkeypatch):
    monkeypatch.setattr(async_http.settings, "DEFAULT_RETRIES", 0)
    monkeypatch.setattr(
        async_http,
        "make_client",
        lambda **_: httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(502))
        ),
    )
    assert main.main(["--db", str(tmp_path / "clog.sqlite"), "ingest"]) == 1


def test_recalculate_exits_nonzero_when_ranking_fails(tmp_path, capsys, monkeypatch):
    class BrokenLedger:
        def __init__(self, conn):
            pass

        async def display_name(self, player_id):
            return player_id

        async def apply_point_delta(self, player_id, display_name, delta):
            raise RuntimeError("ranking ledger unavailable")

    monkeypatch.setattr(main, "SqliteRankingLedger", BrokenLedger)
    db = _seed_db(tmp_path)
    conn = connect(db)
    try:
        LedgerRepository(conn).add_entry("p1", "Dragon pickaxe", score(0.8, False))
        ItemCatalog(conn).set_category_clamp("Wilderness bosses", True)
    finally:
        conn.close()

    assert main.main(["--db", db, "--json", "recalculate", "--pacing", "0"]) == 1
    payload = _json_out(capsys)
    assert payload["corrected_entries"] == 1
    assert payload["failed_players"] == [
        {"player_id": "p1", "display_name": "p1", "delta": 3000 - score(0.8, False)}
    ]


def test_unopenable_database_exits_nonzero(tmp_path):
    # a directory cannot be opened as a database file
    assert main.main(["--db", str(tmp_path), "suggest-categories", "z"]) == 1
