"""Tie free-text venue strings to known venues."""

from __future__ import annotations

from typing import Iterable, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict

from pattern_engine.extraction.models import MatchKind
from pattern_engine.normalization.fuzzy_matcher import FuzzyMatcher
from pattern_engine.normalization.string_normalizer import VenueNameNormalizer, name_key
from pattern_engine.storage.schemas import KnownVenue
from pattern_engine.storage.venue_store import VenueStore
from pattern_engine.utils.config import VenueConfig


class VenueResolution(BaseModel):
    """Outcome of resolving one raw venue string."""

    model_config = ConfigDict(frozen=True)

    raw_text: str
    venue: Optional[KnownVenue] = None
    match_kind: MatchKind = MatchKind.UNMATCHED
    score: float = 0.0
    matched_text: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.venue is not None


class VenueResolver:
    """Resolve venue text by exact name, then alias, then fuzzy similarity.

    Read-only: learning new aliases is ``VenueLearningService``'s job.
    """

    def __init__(
        self,
        store: VenueStore,
        config: VenueConfig | None = None,
        matcher: FuzzyMatcher | None = None,
    ) -> None:
        self.store = store
        self.config = config or VenueConfig()
        self.matcher = matcher or FuzzyMatcher(
            threshold=self.config.fuzzy_threshold,
            scorer=self.config.scorer,
            normalizer=VenueNameNormalizer(rules_path=self.config.rules_file),
        )

    def resolve(self, raw_venue_text: str | None) -> VenueResolution:
        raw = raw_venue_text or ""
        key = name_key(raw)
        if not key:
            return VenueResolution(raw_text=raw)

        venues = self.store.all_venues()

        for venue in venues:
            if name_key(venue.name) == key:
                return VenueResolution(
                    raw_text=raw,
                    venue=venue,
                    match_kind=MatchKind.EXACT,
                    score=1.0,
                    matched_text=venue.name,
                )

        alias_hits = [venue for venue in venues if venue.has_alias(raw)]
        if alias_hits:
            venue = min(alias_hits, key=_tie_break_key)
            return VenueResolution(
                raw_text=raw,
                venue=venue,
                match_kind=MatchKind.ALIAS,
                score=1.0,
                matched_text=next(a for a in venue.aliases if name_key(a) == key),
            )

        return self._fuzzy(raw, venues)

    def resolve_many(self, raw_texts: Iterable[str]) -> List[VenueResolution]:
        return [self.resolve(raw) for raw in raw_texts]

    def unmatched(self, raw_texts: Iterable[str]) -> List[str]:
        """Distinct raw strings (first spelling kept) that resolve to no venue."""
        seen: set[str] = set()
        missing: List[str] = []
        for raw in raw_texts:
            key = name_key(raw)
            if not key or key in seen:
                continue
            seen.add(key)
            if not self.resolve(raw).resolved:
                missing.append(raw)
        return missing

    def _fuzzy(self, raw: str, venues: Iterable[KnownVenue]) -> VenueResolution:
        best: tuple[float, KnownVenue, str] | None = None
        for venue in venues:
            candidates = self.matcher.match_batch(raw, venue.all_names())
            if not candidates:
                continue
            top = candidates[0]
            if best is None or _better(top.score, venue, best[0], best[1]):
                best = (top.score, venue, top.target)

        if best is None or best[0] <= self.matcher.threshold:
            logger.debug(
                "Venue unresolved",
                raw=raw[:80],
                best_score=round(best[0], 3) if best else 0.0,
            )
            return VenueResolution(raw_text=raw, score=best[0] if best else 0.0)

        score, venue, matched_text = best
        return VenueResolution(
            raw_text=raw,
            venue=venue,
            match_kind=MatchKind.FUZZY,
            score=score,
            matched_text=matched_text,
        )


def _tie_break_key(venue: KnownVenue) -> tuple[int, str]:
    return (-venue.correction_count, venue.name.casefold())


def _better(score: float, venue: KnownVenue, best_score: float, best_venue: KnownVenue) -> bool:
    if score != best_score:
        return score > best_score
    return _tie_break_key(venue) < _tie_break_key(best_venue)
