"""Tests for the known-venue table."""

from __future__ import annotations

from pathlib import Path

import pytest

from pattern_engine.errors import VenueNotFound
from pattern_engine.storage.schemas import Coordinates, KnownVenue
from pattern_engine.storage.venue_store import KnownVenueTable, load_seed_venues

CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


def test_lookup_is_case_and_whitespace_insensitive() -> None:
    table = KnownVenueTable()
    table.upsert(KnownVenue(name="The Red Room"))

    assert table.get_by_name("  the   RED room ").name == "The Red Room"
    assert table.get_by_name("Blue Room") is None


def test_require_raises_for_unknown_venue() -> None:
    table = KnownVenueTable()

    with pytest.raises(VenueNotFound):
        table.require("Nowhere")


def test_upsert_keeps_identity() -> None:
    table = KnownVenueTable()
    original = table.upsert(KnownVenue(name="Nokal"))

    updated = table.upsert(KnownVenue(name="nokal", aliases=["Nokal Manila"]))

    assert updated.id == original.id
    assert updated.created_at == original.created_at
    assert len(table) == 1
    assert table.get_by_name("Nokal").aliases == ["Nokal Manila"]


def test_aliases_are_deduplicated() -> None:
    venue = KnownVenue(name="Cinema 76", aliases=["Cinema76", "cinema76", " ", "Cinema 76 Anonas"])

    assert venue.aliases == ["Cinema76", "Cinema 76 Anonas"]
    assert venue.has_alias("CINEMA76")


def test_persists_and_reloads(tmp_path: Path) -> None:
    path = tmp_path / "venues.json"
    table = KnownVenueTable(table_path=path)
    table.upsert(KnownVenue(name="Burgos Park", coordinates=Coordinates(lat=14.55, lng=121.05)))

    reloaded = KnownVenueTable(table_path=path)

    assert reloaded.get_by_name("burgos park").coordinates == Coordinates(lat=14.55, lng=121.05)


def test_seed_file_loads_with_coordinates() -> None:
    venues = load_seed_venues(CONFIG_DIR / "known_venues.yaml")
    table = KnownVenueTable()

    added = table.seed(venues)

    assert added == len(venues)
    red_room = table.get_by_name("The Red Room")
    assert red_room is not None
    assert red_room.has_alias("Red Room")
    assert red_room.coordinates is not None
    assert table.seed(venues) == 0


def test_snapshot_sorted_by_name() -> None:
    table = KnownVenueTable()
    for name in ["Nokal", "Ayala Triangle", "cinema 76"]:
        table.upsert(KnownVenue(name=name))

    assert [v.name for v in table.all_venues()] == ["Ayala Triangle", "cinema 76", "Nokal"]
