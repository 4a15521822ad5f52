from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from config import settings
from core.async_http import FetchError
from parsing.errors import EnvelopeError
from services.ingestion import IngestionPipeline, TABLE_PARAMS, collapse_duplicate_names
from tests.factories import (
    SAMPLE_ROWS,
    SAMPLE_TABLE,
    envelope,
    item,
    make_catalog,
    rarity_row,
    rarity_table,
)


def _snapshot(catalog):
    cur = catalog.conn.cursor()
    cur.execute("SELECT * FROM item ORDER BY item_id")
    items = cur.fetchall()
    cur.execute("SELECT * FROM category ORDER BY category")
    cats = cur.fetchall()
    cur.execute("SELECT * FROM item_category ORDER BY item_id, category")
    links = cur.fetchall()
    return items, cats, links


def _run(catalog, body: str, status: int = 200, seen: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, text=body)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await IngestionPipeline(catalog, client=client, url="https://wiki.test/api.php").run()

    return asyncio.run(scenario())


def test_ingest_populates_catalog_and_lookup():
    catalog = make_catalog()
    seen = []
    report = _run(catalog, envelope(SAMPLE_TABLE), seen=seen)
    assert report.ingested == 4
    assert report.skipped == 0
    assert report.new_categories == 8
    assert dict(seen[0].url.params) == TABLE_PARAMS
    assert catalog.rate_count == 4
    assert asyncio.run(catalog.lookup_rate("3rd age longsword")) == 0.1
    assert catalog.categories.get("Third Age") is not None
    detail = catalog.fetch_item_detail("Uncut onyx")
    assert detail.categories == ("Fortis Colosseum", "Zalcano", "Miscellaneous")


def test_ingest_twice_is_idempotent():
    catalog = make_catalog()
    _run(catalog, envelope(SAMPLE_TABLE))
    first = _snapshot(catalog)
    report = _run(catalog, envelope(SAMPLE_TABLE))
    assert report.new_categories == 0
    assert _snapshot(catalog) == first


def test_reingest_overwrites_rate_and_keeps_flags():
    catalog = make_catalog()
    _run(catalog, envelope(SAMPLE_TABLE))
    catalog.set_category_clamp("Zalcano", True)
    catalog.set_item_whitelist("Uncut onyx", True)
    updated = SAMPLE_TABLE.replace("17.9%", "15.0%")
    _run(catalog, envelope(updated))
    assert asyncio.run(catalog.lookup_rate("Uncut onyx")) == 15.0
    assert catalog.categories.get("Zalcano").clamp is True
    assert catalog.items.get_by_name("Uncut onyx").whitelist is True


def test_bad_rows_are_skipped_not_fatal():
    catalog = make_catalog()
    html = rarity_table(SAMPLE_ROWS + [rarity_row(777, "Mystery", "Misc", "??")])
    report = _run(catalog, envelope(html))
    assert report.ingested == 4
    assert report.skipped == 1
    assert "Mystery" in report.diagnostics[0]
    assert asyncio.run(catalog.lookup_rate("Mystery")) is None


def test_http_failure_aborts(monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_RETRIES", 0)
    catalog = make_catalog()
    with pytest.raises(FetchError):
        _run(catalog, "", status=500)
    assert catalog.rate_count == 0


def test_envelope_without_html_aborts():
    catalog = make_catalog()
    with pytest.raises(EnvelopeError):
        _run(catalog, json.dumps({"error": {"code": "missingtitle"}}))
    assert catalog.items.list_rates() == {}


def test_duplicate_names_collapse_to_most_completed():
    records = [
        item(10, "Shared", 2.0),
        item(11, "Shared", 4.5),
        item(12, "Other", 1.0),
        item(13, "Shared", 4.5),
    ]
    kept = {r.item_name: r.item_id for r in collapse_duplicate_names(records)}
    assert kept == {"Shared": 11, "Other": 12}


def test_duplicate_rows_in_table():
    catalog = make_catalog()
    html = rarity_table(
        [rarity_row(1, "Twin", "Misc", "2%"), rarity_row(2, "Twin", "Misc", "6%")]
    )
    report = _run(catalog, envelope(html))
    assert report.duplicates == 1
    assert catalog.items.get_by_name("Twin").item_id == 2


def test_whitelist_survives_when_duplicate_winner_flips():
    catalog = make_catalog()
    _run(
        catalog,
        envelope(
            rarity_table(
                [rarity_row(10, "Clue scroll", "Misc", "5.0%"), rarity_row(11, "Clue scroll", "Misc", "3.0%")]
            )
        ),
    )
    assert catalog.items.get_by_name("Clue scroll").item_id == 10
    catalog.set_category_clamp("Misc", True)
    catalog.set_item_whitelist("Clue scroll", True)

    _run(
        catalog,
        envelope(
            rarity_table(
                [rarity_row(10, "Clue scroll", "Misc", "2.0%"), rarity_row(11, "Clue scroll", "Misc", "4.0%")]
            )
        ),
    )
    detail = catalog.fetch_item_detail("Clue scroll")
    assert detail.item_id == 11
    assert detail.whitelist is True
    assert detail.clamp_eligible is False
