"""Human-gated promotion of corrections into learned patterns.

A correction never becomes a rule on its own. A reviewer records a suggestion
(regex + normalization tag), and only ``approve`` inserts it into the pattern
store, as a ``learned`` pattern with zero counters.
"""

from __future__ import annotations

import json
import re
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pattern_engine.curation.feedback import CorrectionAuditTrail
from pattern_engine.errors import InvalidPatternError, RepositoryUnavailable, SuggestionNotFound
from pattern_engine.storage.pattern_repository import PatternStore
from pattern_engine.storage.schemas import (
    Correction,
    FieldType,
    NormalizationTag,
    Pattern,
    PatternSource,
    PatternSuggestion,
    SuggestionStatus,
)


class SuggestionTableState(BaseModel):
    """Serialized suggestion table state."""

    model_config = ConfigDict(extra="ignore")

    version: int = 1
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    records: Dict[str, PatternSuggestion] = Field(default_factory=dict)


class PatternSuggestionTable:
    """Pattern suggestions keyed by id, persisted as JSON."""

    def __init__(self, *, table_path: str | Path | None = None) -> None:
        self.table_path = Path(table_path) if table_path else None
        self._lock = threading.Lock()
        self._state = SuggestionTableState()
        if self.table_path and self.table_path.exists():
            self._state = self._load_state(self.table_path)
            logger.info(
                "Loaded {} pattern suggestions from {}",
                len(self._state.records),
                self.table_path,
            )

    def get(self, suggestion_id: str) -> PatternSuggestion:
        record = self._state.records.get(suggestion_id)
        if record is None:
            raise SuggestionNotFound(suggestion_id)
        return record

    def list(self, status: SuggestionStatus | None = None) -> List[PatternSuggestion]:
        records = sorted(self._state.records.values(), key=lambda s: (s.created_at, s.id))
        if status is None:
            return records
        return [record for record in records if record.status == status]

    def save(self, suggestion: PatternSuggestion) -> PatternSuggestion:
        with self._lock:
            self._state.records[suggestion.id] = suggestion
            self._state.version += 1
            self._state.updated_at = datetime.now(UTC)
        self._persist()
        return suggestion

    def __len__(self) -> int:
        return len(self._state.records)

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
                    f"Cannot write suggestion table {self.table_path}: {exc}", store="suggestions"
                ) from exc

    def _load_state(self, path: Path) -> SuggestionTableState:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            return SuggestionTableState.model_validate(payload)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise RepositoryUnavailable(
                f"Cannot load suggestion table {path}: {exc}", store="suggestions"
            ) from exc


class PatternPromotionService:
    """Record, approve and reject pattern suggestions."""

    def __init__(
        self,
        repository: PatternStore,
        suggestions: PatternSuggestionTable,
        *,
        audit: CorrectionAuditTrail | None = None,
    ) -> None:
        self.repository = repository
        self.suggestions = suggestions
        self.audit = audit

    def suggest(
        self,
        *,
        field_type: FieldType | str,
        regex_source: str,
        normalization_tag: NormalizationTag | str,
        correct_value: str,
        raw_text: Optional[str] = None,
        correction: Optional[Correction] = None,
        priority: int = 150,
        seed_confidence: float = 0.5,
    ) -> PatternSuggestion:
        """Queue a suggestion for review.

        Raises:
            InvalidPatternError: the regex is unusable, or an identical
                suggestion is already pending.
        """
        field_type = FieldType(field_type)
        normalization_tag = NormalizationTag(normalization_tag)
        try:
            Pattern(
                field_type=field_type,
                regex_source=regex_source,
                normalization_tag=normalization_tag,
            )
        except ValidationError as exc:
            raise InvalidPatternError(f"Unusable suggested pattern: {exc}") from exc

        if raw_text is None and correction is not None:
            raw_text = correction.original_text

        for pending in self.suggestions.list(SuggestionStatus.PENDING):
            if (
                pending.field_type == field_type
                and _fold(pending.correct_value) == _fold(correct_value)
                and _fold(pending.raw_text) == _fold(raw_text)
            ):
                raise InvalidPatternError(
                    f"A pending suggestion for this value already exists: {pending.id}"
                )

        if raw_text and re.search(regex_source, raw_text, re.IGNORECASE) is None:
            logger.warning(
                "Suggested regex does not match its source text",
                field_type=field_type.value,
                regex=regex_source,
            )

        suggestion = self.suggestions.save(
            PatternSuggestion(
                field_type=field_type,
                regex_source=regex_source,
                normalization_tag=normalization_tag,
                priority=priority,
                seed_confidence=seed_confidence,
                correction_id=correction.id if correction else None,
                raw_text=raw_text,
                correct_value=correct_value,
            )
        )
        self._record("suggestion_created", suggestion)
        logger.info("Queued pattern suggestion", suggestion_id=suggestion.id, field=field_type.value)
        return suggestion

    def approve(self, suggestion_id: str, *, reviewed_by: Optional[str] = None) -> Pattern:
        """Insert the suggested pattern as a learned rule."""
        suggestion = self._require_pending(suggestion_id)
        pattern = self.repository.insert(
            Pattern(
                field_type=suggestion.field_type,
                regex_source=suggestion.regex_source,
                normalization_tag=suggestion.normalization_tag,
                priority=suggestion.priority,
                seed_confidence=suggestion.seed_confidence,
                source=PatternSource.LEARNED,
                description=f"Learned from suggestion {suggestion.id}",
            )
        )
        updated = self.suggestions.save(
            suggestion.model_copy(
                update={
                    "status": SuggestionStatus.APPROVED,
                    "learned_pattern_id": pattern.id,
                    "reviewed_by": reviewed_by,
                    "updated_at": datetime.now(UTC),
                }
            )
        )
        self._record("suggestion_approved", updated)
        return pattern

    def reject(self, suggestion_id: str, *, reviewed_by: Optional[str] = None) -> PatternSuggestion:
        suggestion = self._require_pending(suggestion_id)
        updated = self.suggestions.save(
            suggestion.model_copy(
                update={
                    "status": SuggestionStatus.REJECTED,
                    "reviewed_by": reviewed_by,
                    "updated_at": datetime.now(UTC),
                }
            )
        )
        self._record("suggestion_rejected", updated)
        return updated

    def pending(self) -> List[PatternSuggestion]:
        return self.suggestions.list(SuggestionStatus.PENDING)

    def _require_pending(self, suggestion_id: str) -> PatternSuggestion:
        suggestion = self.suggestions.get(suggestion_id)
        if suggestion.status != SuggestionStatus.PENDING:
            raise InvalidPatternError(
                f"Suggestion {suggestion_id} is already {suggestion.status.value}"
            )
        return suggestion

    def _record(self, event: str, suggestion: PatternSuggestion) -> None:
        if self.audit is not None:
            self.audit.record(event, suggestion.model_dump(mode="json"))


def _fold(value: Optional[str]) -> str:
    return " ".join((value or "").split()).casefold()
