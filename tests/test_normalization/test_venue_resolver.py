"""Tests for venue resolution."""

from __future__ import annotations

from pathlib import Path

from pattern_engine.extraction.models import MatchKind
from pattern_engine.normalization.venue_resolver import VenueResolver
from pattern_engine.storage.schemas import KnownVenue
from pattern_engine.storage.venue_store import KnownVenueTable, load_seed_venues
from pattern_engine.utils.config import VenueConfig

CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


def _seeded_resolver() -> VenueResolver:
    table = KnownVenueTable()
    table.seed(load_seed_venues(CONFIG_DIR / "known_venues.yaml"))
    return VenueResolver(table)


def test_exact_name_match_ignores_case_and_spacing() -> None:
    resolution = _seeded_resolver().resolve("  the red   ROOM ")

    assert resolution.match_kind == MatchKind.EXACT
    assert resolution.venue.name == "The Red Room"
    assert resolution.score == 1.0


def test_alias_match() -> None:
    resolution = _seeded_resolver().resolve("3TL")

    assert resolution.match_kind == MatchKind.ALIAS
    assert resolution.venue.name == "3 Torre Lorenzo"
    assert resolution.matched_text == "3TL"


def test_fuzzy_match_for_punctuation_variants() -> None:
    resolution = _seeded_resolver().resolve("The Red Room, Poblacion")

    assert resolution.match_kind == MatchKind.FUZZY
    assert resolution.venue.name == "The Red Room"
    assert resolution.score > VenueConfig().fuzzy_threshold
    assert resolution.resolved is True


def test_unknown_venue_is_unmatched_without_raising() -> None:
    resolution = _seeded_resolver().resolve("Xylophone Warehouse Quezon")

    assert resolution.match_kind == MatchKind.UNMATCHED
    assert resolution.venue is None
    assert resolution.score < VenueConfig().fuzzy_threshold


def test_blank_text_is_unmatched() -> None:
    resolution = _seeded_resolver().resolve(None)

    assert resolution.resolved is False
    assert resolution.score == 0.0


def test_alias_ties_prefer_most_corrected_venue() -> None:
    table = KnownVenueTable()
    table.upsert(KnownVenue(name="Alpha Hall", aliases=["The Annex"]))
    table.upsert(KnownVenue(name="Beta Hall", aliases=["The Annex"], correction_count=3))
    resolver = VenueResolver(table)

    assert resolver.resolve("the annex").venue.name == "Beta Hall"


def test_fuzzy_ties_fall_back_to_name_order() -> None:
    table = KnownVenueTable()
    table.upsert(KnownVenue(name="Zeta Hall", aliases=["Jazz Room"]))
    table.upsert(KnownVenue(name="Alpha Hall", aliases=["Jazz Room"]))
    resolver = VenueResolver(table)

    resolution = resolver.resolve("Jazz Room!")

    assert resolution.match_kind == MatchKind.FUZZY
    assert resolution.venue.name == "Alpha Hall"


def test_fuzzy_ties_prefer_most_corrected_venue() -> None:
    table = KnownVenueTable()
    table.upsert(KnownVenue(name="Alpha Hall", aliases=["Jazz Room"]))
    table.upsert(KnownVenue(name="Zeta Hall", aliases=["Jazz Room"], correction_count=2))
    resolver = VenueResolver(table)

    resolution = resolver.resolve("Jazz Room!")

    assert resolution.match_kind == MatchKind.FUZZY
    assert resolution.venue.name == "Zeta Hall"


def test_adding_exact_name_wins_over_earlier_fuzzy_result() -> None:
    resolver = _seeded_resolver()
    before = resolver.resolve("Red Room Annex")

    resolver.store.upsert(KnownVenue(name="Red Room Annex", city="Makati"))
    after = resolver.resolve("red room  annex")

    assert before.match_kind in {MatchKind.FUZZY, MatchKind.UNMATCHED}
    assert after.match_kind == MatchKind.EXACT
    assert after.venue.name == "Red Room Annex"
    assert after.score == 1.0


def test_higher_threshold_rejects_weak_matches() -> None:
    table = KnownVenueTable()
    table.upsert(KnownVenue(name="Salcedo Market"))
    loose = VenueResolver(table, VenueConfig(fuzzy_threshold=0.3))
    strict = VenueResolver(table, VenueConfig(fuzzy_threshold=0.95))

    assert loose.resolve("Salcedo Weekend Mkt").resolved is True
    assert strict.resolve("Salcedo Weekend Mkt").resolved is False


def test_score_must_exceed_threshold() -> None:
    table = KnownVenueTable()
    table.upsert(KnownVenue(name="Alpha Hall", aliases=["Jazz Room"]))
    resolver = VenueResolver(table, VenueConfig(fuzzy_threshold=1.0))

    resolution = resolver.resolve("Jazz Room!")

    assert resolution.score == 1.0
    assert resolution.resolved is False


def test_unmatched_lists_distinct_unknown_strings() -> None:
    resolver = _seeded_resolver()

    missing = resolver.unmatched(
        ["Nokal", "Mystery Bar", "mystery  bar", "", "Cinema76", "Hidden Garden"]
    )

    assert missing == ["Mystery Bar", "Hidden Garden"]


def test_resolve_many_keeps_order() -> None:
    resolver = _seeded_resolver()

    results = resolver.resolve_many(["Nokal", "Mystery Bar"])

    assert [r.resolved for r in results] == [True, False]
