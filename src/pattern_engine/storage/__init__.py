"""Storage package: records and the stores the engine reads and writes."""

from pattern_engine.storage.pattern_repository import (
    PatternRepository,
    PatternStore,
    load_seed_patterns,
)
from pattern_engine.storage.schemas import (
    Coordinates,
    Correction,
    FieldType,
    KnownVenue,
    NormalizationTag,
    Pattern,
    PatternSource,
    PatternSuggestion,
    SuggestionStatus,
)
from pattern_engine.storage.venue_store import KnownVenueTable, VenueStore, load_seed_venues

__all__ = [
    "Coordinates",
    "Correction",
    "FieldType",
    "KnownVenue",
    "KnownVenueTable",
    "NormalizationTag",
    "Pattern",
    "PatternRepository",
    "PatternSource",
    "PatternStore",
    "PatternSuggestion",
    "SuggestionStatus",
    "VenueStore",
    "load_seed_patterns",
    "load_seed_venues",
]
