"""Explicit venue learning from reviewer corrections."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Optional

from loguru import logger

from pattern_engine.curation.feedback import CorrectionAuditTrail
from pattern_engine.normalization.string_normalizer import name_key
from pattern_engine.storage.schemas import Coordinates, KnownVenue
from pattern_engine.storage.venue_store import VenueStore


class VenueLearningService:
    """Teach the venue table a new spelling or a new venue.

    Resolution itself never learns; this runs only when a reviewer says which
    venue a raw string meant.
    """

    def __init__(self, store: VenueStore, *, audit: CorrectionAuditTrail | None = None) -> None:
        self.store = store
        self.audit = audit
        self._lock = threading.Lock()

    def learn_from_correction(
        self,
        raw_text: str,
        corrected_name: str,
        *,
        coordinates: Optional[Coordinates] = None,
        address: Optional[str] = None,
        city: Optional[str] = None,
    ) -> KnownVenue:
        """Record that ``raw_text`` refers to ``corrected_name``.

        An existing venue gains ``raw_text`` as an alias (if it is neither the
        name nor a known alias), has missing coordinates/address/city filled,
        and its ``correction_count`` bumped. An unknown name becomes a new
        venue flagged ``learned_from_corrections``.
        """
        raw = " ".join((raw_text or "").split())
        with self._lock:
            existing = self.store.get_by_name(corrected_name)
            if existing is not None:
                aliases = list(existing.aliases)
                if raw and name_key(raw) != name_key(existing.name) and not existing.has_alias(raw):
                    aliases.append(raw)
                venue = existing.model_copy(
                    update={
                        "aliases": aliases,
                        "coordinates": existing.coordinates or coordinates,
                        "address": existing.address or address,
                        "city": existing.city or city,
                        "correction_count": existing.correction_count + 1,
                        "updated_at": datetime.now(UTC),
                    }
                )
                event = "venue_alias_learned"
            else:
                aliases = [raw] if raw and name_key(raw) != name_key(corrected_name) else []
                venue = KnownVenue(
                    name=corrected_name,
                    aliases=aliases,
                    coordinates=coordinates,
                    address=address,
                    city=city,
                    learned_from_corrections=True,
                    correction_count=1,
                )
                event = "venue_created"
            stored = self.store.upsert(venue)

        logger.info(
            "Learned venue from correction",
            venue=stored.name,
            raw=raw[:80],
            action=event,
            correction_count=stored.correction_count,
        )
        if self.audit is not None:
            self.audit.record(event, {"raw_text": raw, **stored.model_dump(mode="json")})
        return stored
