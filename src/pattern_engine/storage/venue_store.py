"""Known-venue table with JSON persistence and YAML seeding."""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, List, Protocol, Tuple

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pattern_engine.errors import RepositoryUnavailable, VenueNotFound
from pattern_engine.storage.schemas import Coordinates, KnownVenue


class VenueStore(Protocol):
    """Storage surface the resolver and venue learning consume."""

    def all_venues(self) -> Tuple[KnownVenue, ...]: ...

    def get_by_name(self, name: str) -> KnownVenue | None: ...

    def upsert(self, venue: KnownVenue) -> KnownVenue: ...


class VenueTableState(BaseModel):
    """Serialized venue table state."""

    model_config = ConfigDict(extra="ignore")

    version: int = 1
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    records: Dict[str, KnownVenue] = Field(default_factory=dict)


class KnownVenueTable:
    """Known venues keyed by case-folded name.

    ``all_venues`` returns a tuple snapshot so concurrent resolvers never see a
    half-applied upsert.
    """

    def __init__(self, *, table_path: str | Path | None = None) -> None:
        self.table_path = Path(table_path) if table_path else None
        self._lock = threading.Lock()
        self._state = VenueTableState()
        self._snapshot: Tuple[KnownVenue, ...] = ()

        if self.table_path and self.table_path.exists():
            self._state = self._load_state(self.table_path)
            logger.info(
                "Loaded venue table with {} records from {}",
                len(self._state.records),
                self.table_path,
            )
        self._refresh_snapshot()

    def all_venues(self) -> Tuple[KnownVenue, ...]:
        return self._snapshot

    def get_by_name(self, name: str) -> KnownVenue | None:
        return self._state.records.get(self._key(name))

    def require(self, name: str) -> KnownVenue:
        venue = self.get_by_name(name)
        if venue is None:
            raise VenueNotFound(name)
        return venue

    def upsert(self, venue: KnownVenue) -> KnownVenue:
        """Create or replace a venue by name, keeping its original id and created_at."""
        key = self._key(venue.name)
        with self._lock:
            existing = self._state.records.get(key)
            if existing is not None:
                venue = venue.model_copy(
                    update={
                        "id": existing.id,
                        "created_at": existing.created_at,
                        "updated_at": datetime.now(UTC),
                    }
                )
            self._state.records[key] = venue
            self._state.version += 1
            self._state.updated_at = datetime.now(UTC)
            self._refresh_snapshot()
        self._persist()
        return venue

    def seed(self, venues: List[KnownVenue]) -> int:
        """Insert venues whose names are not stored yet; returns count added."""
        added = 0
        for venue in venues:
            if self.get_by_name(venue.name) is not None:
                continue
            self.upsert(venue)
            added += 1
        return added

    def export_json(self, path: str | Path | None = None) -> Path:
        target = Path(path) if path else self.table_path
        if target is None:
            raise ValueError("No export path given and venue table has no table_path")
        target.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            payload = self._state.model_dump(mode="json")
        target.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        logger.info("Exported {} venues to {}", len(payload["records"]), target)
        return target

    def import_json(self, path: str | Path) -> None:
        imported = self._load_state(Path(path))
        with self._lock:
            imported.version = self._state.version + 1
            imported.updated_at = datetime.now(UTC)
            self._state = imported
            self._refresh_snapshot()
        self._persist()
        logger.info("Imported {} venues from {}", len(imported.records), path)

    def __len__(self) -> int:
        return len(self._state.records)

    def _refresh_snapshot(self) -> None:
        self._snapshot = tuple(
            sorted(self._state.records.values(), key=lambda v: v.name.casefold())
        )

    def _persist(self) -> None:
        if self.table_path is None:
            return
        with self._lock:
            payload = self._state.model_dump(mode="json")
            try:
                self.table_path.parent.mkdir(parents=True, exist_ok=True)
                self.table_path.write_text(
                    json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8"
                )
            except OSError as exc:
                raise RepositoryUnavailable(
                    f"Cannot write venue table {self.table_path}: {exc}", store="venues"
                ) from exc

    def _load_state(self, path: Path) -> VenueTableState:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            return VenueTableState.model_validate(payload)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise RepositoryUnavailable(
                f"Cannot load venue table {path}: {exc}", store="venues"
            ) from exc

    @staticmethod
    def _key(name: str) -> str:
        return " ".join(name.split()).casefold()


def load_seed_venues(path: str | Path) -> List[KnownVenue]:
    """Load seed venues from YAML (``venues:`` list of name/aliases/address/city/lat/lng)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Seed venue file not found: {path}")

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Seed venue file root must be a mapping/dict: {path}")

    venues: List[KnownVenue] = []
    for entry in data.get("venues", []):
        try:
            venues.append(_venue_from_seed(entry))
        except (ValidationError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping invalid seed venue", entry=str(entry)[:120], error=str(exc))
    logger.info("Loaded {} seed venues from {}", len(venues), path)
    return venues


def _venue_from_seed(entry: Dict[str, Any]) -> KnownVenue:
    coordinates = None
    if entry.get("lat") is not None and entry.get("lng") is not None:
        coordinates = Coordinates(lat=float(entry["lat"]), lng=float(entry["lng"]))
    return KnownVenue(
        name=entry["name"],
        aliases=list(entry.get("aliases") or []),
        address=entry.get("address"),
        city=entry.get("city"),
        instagram_handle=entry.get("instagram_handle"),
        coordinates=coordinates,
    )
