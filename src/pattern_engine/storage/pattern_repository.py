"""Concurrency-safe pattern repository.

Readers get an immutable tuple snapshot per field type; writers swap that
snapshot under a short structural lock. Counter updates go through
``compare_and_set`` which serializes on a per-pattern lock, so corrections for
different patterns never wait on each other.
"""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Protocol, Tuple

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pattern_engine.errors import (
    ConcurrentUpdateConflict,
    InvalidPatternError,
    PatternNotFound,
    RepositoryUnavailable,
)
from pattern_engine.storage.schemas import FieldType, NormalizationTag, Pattern, PatternSource


class PatternStore(Protocol):
    """Storage surface the engine consumes for patterns."""

    def list_active(self, field_type: FieldType) -> Tuple[Pattern, ...]: ...

    def get(self, pattern_id: str) -> Pattern: ...

    def compare_and_set(self, pattern: Pattern, expected_version: int) -> Pattern: ...

    def insert(self, pattern: Pattern) -> Pattern: ...

    def set_active(self, pattern_id: str, active: bool) -> Pattern: ...

    def reset_counters(self, pattern_id: str) -> Pattern: ...

    def all_patterns(self) -> List[Pattern]: ...


class PatternTableState(BaseModel):
    """Serialized pattern table state."""

    model_config = ConfigDict(extra="ignore")

    version: int = 1
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    records: Dict[str, Pattern] = Field(default_factory=dict)


class PatternRepository:
    """In-process pattern store with optional JSON persistence."""

    def __init__(self, *, table_path: str | Path | None = None) -> None:
        self.table_path = Path(table_path) if table_path else None
        self._structure_lock = threading.Lock()
        self._persist_lock = threading.Lock()
        self._pattern_locks: Dict[str, threading.Lock] = {}
        self._state = PatternTableState()
        self._active: Dict[FieldType, Tuple[Pattern, ...]] = {ft: () for ft in FieldType}

        if self.table_path and self.table_path.exists():
            self._state = self._load_state(self.table_path)
            logger.info(
                "Loaded pattern table with {} records from {}",
                len(self._state.records),
                self.table_path,
            )
        self._rebuild_all_snapshots()

    # Read path ------------------------------------------------------
    def list_active(self, field_type: FieldType) -> Tuple[Pattern, ...]:
        """Active patterns for a field type, as an immutable snapshot."""
        return self._active[FieldType(field_type)]

    def get(self, pattern_id: str) -> Pattern:
        record = self._state.records.get(pattern_id)
        if record is None:
            raise PatternNotFound(pattern_id)
        return record

    def all_patterns(self) -> List[Pattern]:
        """All patterns, active or not, in selector order within each field."""
        return sorted(
            self._state.records.values(),
            key=lambda p: (p.field_type.value, *p.rank_key()),
        )

    def __len__(self) -> int:
        return len(self._state.records)

    # Write path -----------------------------------------------------
    def compare_and_set(self, pattern: Pattern, expected_version: int) -> Pattern:
        """Store ``pattern`` if the stored version still equals ``expected_version``.

        Raises:
            ConcurrentUpdateConflict: another writer got there first.
            PatternNotFound: the id is unknown.
        """
        with self._lock_for(pattern.id):
            current = self.get(pattern.id)
            if current.version != expected_version:
                raise ConcurrentUpdateConflict(pattern.id, expected_version, current.version)

            stored = pattern.model_copy(
                update={
                    "version": current.version + 1,
                    "updated_at": datetime.now(UTC),
                    # identity fields stay as stored
                    "id": current.id,
                    "field_type": current.field_type,
                    "created_at": current.created_at,
                }
            )
            self._store(stored)
        self._persist()
        return stored

    def insert(self, pattern: Pattern) -> Pattern:
        """Add a new pattern; duplicates by id or (field, regex) are refused."""
        with self._structure_lock:
            if pattern.id in self._state.records:
                raise InvalidPatternError(f"Pattern id already exists: {pattern.id}")
            for existing in self._state.records.values():
                if (
                    existing.field_type == pattern.field_type
                    and existing.regex_source == pattern.regex_source
                ):
                    raise InvalidPatternError(
                        f"Duplicate {pattern.field_type.value} pattern: {pattern.regex_source}"
                    )
            self._state.records[pattern.id] = pattern
            self._pattern_locks[pattern.id] = threading.Lock()
            self._rebuild_snapshot(pattern.field_type)
            self._bump_version()
        self._persist()
        logger.info(
            "Inserted pattern",
            pattern_id=pattern.id,
            field_type=pattern.field_type.value,
            source=pattern.source.value,
        )
        return pattern

    def set_active(self, pattern_id: str, active: bool) -> Pattern:
        """Activate or deactivate a pattern. Inactive patterns stay for audit."""
        return self._update_fields(pattern_id, {"is_active": active})

    def reset_counters(self, pattern_id: str) -> Pattern:
        """Explicit reset: counters back to zero, confidence back to seed."""
        return self._update_fields(pattern_id, {"success_count": 0, "failure_count": 0})

    def seed(self, patterns: Iterable[Pattern]) -> int:
        """Insert patterns whose (field, regex) is not stored yet; returns count added."""
        added = 0
        for pattern in patterns:
            try:
                self.insert(pattern)
            except InvalidPatternError:
                logger.debug("Skipping already seeded pattern {}", pattern.regex_source)
                continue
            added += 1
        return added

    # Export/import --------------------------------------------------
    def export_json(self, path: str | Path | None = None) -> Path:
        """Export the pattern table to JSON."""
        target = Path(path) if path else self.table_path
        if target is None:
            raise ValueError("No export path given and repository has no table_path")
        target.parent.mkdir(parents=True, exist_ok=True)
        with self._structure_lock:
            payload = self._state.model_dump(mode="json")
        target.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        logger.info("Exported {} patterns to {}", len(payload["records"]), target)
        return target

    def import_json(self, path: str | Path) -> None:
        """Replace the current table with the contents of a JSON export."""
        imported = self._load_state(Path(path))
        with self._structure_lock:
            imported.version = self._state.version + 1
            imported.updated_at = datetime.now(UTC)
            self._state = imported
            self._pattern_locks = {pid: threading.Lock() for pid in imported.records}
            self._rebuild_all_snapshots()
        self._persist()
        logger.info("Imported {} patterns from {}", len(imported.records), path)

    # Helpers --------------------------------------------------------
    def _update_fields(self, pattern_id: str, changes: Dict[str, Any]) -> Pattern:
        with self._lock_for(pattern_id):
            current = self.get(pattern_id)
            stored = current.model_copy(
                update={
                    **changes,
                    "version": current.version + 1,
                    "updated_at": datetime.now(UTC),
                }
            )
            self._store(stored)
        self._persist()
        return stored

    def _store(self, pattern: Pattern) -> None:
        with self._structure_lock:
            self._state.records[pattern.id] = pattern
            self._rebuild_snapshot(pattern.field_type)
            self._bump_version()

    def _lock_for(self, pattern_id: str) -> threading.Lock:
        with self._structure_lock:
            if pattern_id not in self._state.records:
                raise PatternNotFound(pattern_id)
            return self._pattern_locks.setdefault(pattern_id, threading.Lock())

    def _rebuild_snapshot(self, field_type: FieldType) -> None:
        self._active[field_type] = tuple(
            sorted(
                (
                    p
                    for p in self._state.records.values()
                    if p.field_type == field_type and p.is_active
                ),
                key=Pattern.rank_key,
            )
        )

    def _rebuild_all_snapshots(self) -> None:
        for field_type in FieldType:
            self._rebuild_snapshot(field_type)

    def _bump_version(self) -> None:
        self._state.version += 1
        self._state.updated_at = datetime.now(UTC)

    def _persist(self) -> None:
        if self.table_path is None:
            return
        with self._persist_lock:
            with self._structure_lock:
                payload = self._state.model_dump(mode="json")
            try:
                self.table_path.parent.mkdir(parents=True, exist_ok=True)
                self.table_path.write_text(
                    json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8"
                )
            except OSError as exc:
                raise RepositoryUnavailable(
                    f"Cannot write pattern table {self.table_path}: {exc}", store="patterns"
                ) from exc

    def _load_state(self, path: Path) -> PatternTableState:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            return PatternTableState.model_validate(payload)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise RepositoryUnavailable(
                f"Cannot load pattern table {path}: {exc}", store="patterns"
            ) from exc


def load_seed_patterns(path: str | Path) -> List[Pattern]:
    """Load the seed pattern bank from YAML.

    Each entry takes ``field``, ``regex``, ``tag`` and optionally ``id``,
    ``priority``, ``seed_confidence``, ``success_count``, ``failure_count``,
    ``description`` and ``active``.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Seed pattern file not found: {path}")

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Seed pattern file root must be a mapping/dict: {path}")

    patterns: List[Pattern] = []
    for entry in data.get("patterns", []):
        try:
            patterns.append(_pattern_from_seed(entry))
        except (ValidationError, ValueError, KeyError) as exc:
            logger.warning("Skipping invalid seed pattern", entry=str(entry)[:120], error=str(exc))
    logger.info("Loaded {} seed patterns from {}", len(patterns), path)
    return patterns


def _pattern_from_seed(entry: Dict[str, Any]) -> Pattern:
    payload: Dict[str, Any] = {
        "field_type": FieldType(entry["field"]),
        "regex_source": entry["regex"],
        "normalization_tag": NormalizationTag(entry["tag"]),
        "priority": int(entry.get("priority", 100)),
        "seed_confidence": float(entry.get("seed_confidence", 0.5)),
        "success_count": int(entry.get("success_count", 0)),
        "failure_count": int(entry.get("failure_count", 0)),
        "description": str(entry.get("description", "")),
        "is_active": bool(entry.get("active", True)),
        "source": PatternSource(entry.get("source", PatternSource.SEEDED.value)),
    }
    if entry.get("id"):
        payload["id"] = str(entry["id"])
    return Pattern(**payload)

