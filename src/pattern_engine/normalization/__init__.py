"""Normalization package."""

from pattern_engine.normalization.fuzzy_matcher import (
    FuzzyMatchCandidate,
    FuzzyMatcher,
    trigram_similarity,
)
from pattern_engine.normalization.string_normalizer import (
    VenueNameNormalizer,
    VenueNameResult,
    VenueNameRules,
)
from pattern_engine.normalization.venue_resolver import VenueResolution, VenueResolver

__all__ = [
    "FuzzyMatchCandidate",
    "FuzzyMatcher",
    "VenueNameNormalizer",
    "VenueNameResult",
    "VenueNameRules",
    "VenueResolution",
    "VenueResolver",
    "trigram_similarity",
]
