"""Correction feedback: turn reviewer verdicts into pattern statistics."""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from loguru import logger
from pydantic import BaseModel

from pattern_engine.errors import ConcurrentUpdateConflict, UpdateRetriesExhausted
from pattern_engine.storage.pattern_repository import PatternStore
from pattern_engine.storage.schemas import Correction, Pattern
from pattern_engine.utils.config import FeedbackConfig


class Outcome(str, Enum):
    """Reviewer verdict on one extracted field."""

    CONFIRMED = "confirmed"
    CORRECTED = "corrected"


class CorrectionOutcome(BaseModel):
    """What ingesting one correction did."""

    correction_id: str
    outcome: Outcome
    pattern: Optional[Pattern] = None


class CorrectionAuditTrail:
    """Append-only JSONL audit trail for corrections and curation actions."""

    def __init__(self, path: Path, *, enabled: bool = True) -> None:
        self.path = Path(path)
        self.enabled = enabled
        self._lock = threading.Lock()
        if self.enabled:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def record(self, event: str, payload: Dict[str, object]) -> None:
        """Append an audit entry to disk."""
        if not self.enabled:
            return

        entry = {
            "event": event,
            "payload": payload,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        line = json.dumps(entry, sort_keys=True, default=str) + "\n"
        with self._lock:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line)


class ConfidenceUpdater:
    """Apply one observation to a pattern's counters.

    Each call is read, modify, compare-and-set against the pattern's version.
    Lost races are retried here; callers only see ``UpdateRetriesExhausted``
    if the budget runs out. Calls are not idempotent: replaying a correction
    counts it twice.
    """

    def __init__(self, store: PatternStore, config: FeedbackConfig | None = None) -> None:
        self.store = store
        self.config = config or FeedbackConfig()

    def apply_outcome(self, pattern_id: str, outcome: Outcome | str) -> Pattern:
        outcome = Outcome(outcome)
        retries = self.config.max_update_retries

        for attempt in range(1, retries + 1):
            current = self.store.get(pattern_id)
            if outcome is Outcome.CONFIRMED:
                changes: Dict[str, object] = {"success_count": current.success_count + 1}
            else:
                changes = {"failure_count": current.failure_count + 1}
            changes["last_used_at"] = datetime.now(UTC)
            updated = current.model_copy(update=changes)

            try:
                stored = self.store.compare_and_set(updated, expected_version=current.version)
            except ConcurrentUpdateConflict as exc:
                logger.debug(
                    "Retrying confidence update after conflict",
                    pattern_id=pattern_id,
                    attempt=attempt,
                    actual_version=exc.actual_version,
                )
                continue

            logger.info(
                "Applied {} outcome",
                outcome.value,
                pattern_id=pattern_id,
                success_count=stored.success_count,
                failure_count=stored.failure_count,
                confidence=round(stored.confidence, 4),
            )
            return stored

        raise UpdateRetriesExhausted(
            f"Gave up updating pattern {pattern_id} after {retries} conflicting attempts"
        )


class CorrectionService:
    """Ingest reviewer corrections: derive the outcome, update stats, audit."""

    def __init__(
        self,
        updater: ConfidenceUpdater,
        *,
        audit: CorrectionAuditTrail | None = None,
        config: FeedbackConfig | None = None,
    ) -> None:
        self.updater = updater
        self.config = config or updater.config
        self.audit = audit or CorrectionAuditTrail(
            Path(self.config.audit_path), enabled=self.config.enable_audit_trail
        )

    def ingest(self, correction: Correction) -> CorrectionOutcome:
        """Consume one correction.

        The outcome is ``confirmed`` when the corrected value equals the
        original after whitespace and case folding, ``corrected`` otherwise.
        Counters move only when the correction names the pattern that produced
        the original value.
        """
        outcome = derive_outcome(correction)
        pattern: Optional[Pattern] = None
        if correction.pattern_id:
            pattern = self.updater.apply_outcome(correction.pattern_id, outcome)

        self.audit.record(
            "correction_ingested",
            {
                **correction.model_dump(mode="json"),
                "outcome": outcome.value,
                "pattern_confidence": pattern.confidence if pattern else None,
            },
        )
        return CorrectionOutcome(correction_id=correction.id, outcome=outcome, pattern=pattern)


def derive_outcome(correction: Correction) -> Outcome:
    if correction.original_value is None:
        return Outcome.CORRECTED
    if _fold(correction.original_value) == _fold(correction.corrected_value):
        return Outcome.CONFIRMED
    return Outcome.CORRECTED


def _fold(value: str) -> str:
    return " ".join(value.split()).casefold()
