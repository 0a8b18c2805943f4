"""Tests for learning venues from reviewer corrections."""

from __future__ import annotations

import json
from pathlib import Path

from pattern_engine.curation.feedback import CorrectionAuditTrail
from pattern_engine.curation.venue_learning import VenueLearningService
from pattern_engine.extraction.models import MatchKind
from pattern_engine.normalization.venue_resolver import VenueResolver
from pattern_engine.storage.schemas import Coordinates, KnownVenue
from pattern_engine.storage.venue_store import KnownVenueTable


def test_existing_venue_gains_alias() -> None:
    table = KnownVenueTable()
    table.upsert(KnownVenue(name="SaGuijo Café + Bar", aliases=["Sa Guijo"]))
    service = VenueLearningService(table)

    venue = service.learn_from_correction("saguijo makati", "SaGuijo Café + Bar")

    assert venue.aliases == ["Sa Guijo", "saguijo makati"]
    assert venue.correction_count == 1
    assert venue.learned_from_corrections is False
    resolution = VenueResolver(table).resolve("SAGUIJO MAKATI")
    assert resolution.match_kind == MatchKind.ALIAS


def test_known_alias_is_not_duplicated() -> None:
    table = KnownVenueTable()
    table.upsert(KnownVenue(name="Nokal", aliases=["Nokal Manila"]))
    service = VenueLearningService(table)

    service.learn_from_correction("nokal manila", "Nokal")
    venue = service.learn_from_correction("Nokal", "nokal")

    assert venue.aliases == ["Nokal Manila"]
    assert venue.correction_count == 2


def test_missing_details_are_filled_not_overwritten() -> None:
    table = KnownVenueTable()
    table.upsert(KnownVenue(name="Nokal", city="Makati"))
    service = VenueLearningService(table)

    venue = service.learn_from_correction(
        "Nokal MCS",
        "Nokal",
        coordinates=Coordinates(lat=14.5641, lng=121.0313),
        city="Manila",
        address="Makati Cinema Square",
    )

    assert venue.city == "Makati"
    assert venue.address == "Makati Cinema Square"
    assert venue.coordinates == Coordinates(lat=14.5641, lng=121.0313)


def test_unknown_venue_is_created(tmp_path: Path) -> None:
    table = KnownVenueTable()
    audit_path = tmp_path / "audit.jsonl"
    service = VenueLearningService(table, audit=CorrectionAuditTrail(audit_path))

    venue = service.learn_from_correction("the hidden garden qc", "Hidden Garden", city="Quezon City")

    assert venue.learned_from_corrections is True
    assert venue.correction_count == 1
    assert venue.aliases == ["the hidden garden qc"]
    assert table.get_by_name("hidden garden") is not None
    entry = json.loads(audit_path.read_text(encoding="utf-8").splitlines()[0])
    assert entry["event"] == "venue_created"
