"""Tests for human-gated pattern promotion."""

from __future__ import annotations

from pathlib import Path

import pytest

from pattern_engine.curation.feedback import CorrectionAuditTrail
from pattern_engine.curation.pattern_promotion import PatternPromotionService, PatternSuggestionTable
from pattern_engine.errors import InvalidPatternError, RepositoryUnavailable, SuggestionNotFound
from pattern_engine.extraction.selector import PatternSelector
from pattern_engine.storage.pattern_repository import PatternRepository
from pattern_engine.storage.schemas import (
    Correction,
    FieldType,
    PatternSource,
    SuggestionStatus,
)


def _service(tmp_path: Path) -> PatternPromotionService:
    return PatternPromotionService(
        PatternRepository(),
        PatternSuggestionTable(table_path=tmp_path / "suggestions.json"),
        audit=CorrectionAuditTrail(tmp_path / "audit.jsonl"),
    )


def _suggest(service: PatternPromotionService, **overrides):
    payload = {
        "field_type": "price",
        "regex_source": r"\bdonation\s*(?P<value>\d+)",
        "normalization_tag": "peso_amount",
        "correct_value": "200",
        "raw_text": "donation 200 at the door",
    }
    payload.update(overrides)
    return service.suggest(**payload)


def test_suggestion_is_pending_and_not_active(tmp_path: Path) -> None:
    service = _service(tmp_path)

    suggestion = _suggest(service)

    assert suggestion.status == SuggestionStatus.PENDING
    assert service.pending() == [suggestion]
    assert service.repository.list_active(FieldType.PRICE) == ()


def test_approve_inserts_learned_pattern(tmp_path: Path) -> None:
    service = _service(tmp_path)
    suggestion = _suggest(service, priority=140, seed_confidence=0.6)

    pattern = service.approve(suggestion.id, reviewed_by="curator")

    assert pattern.source == PatternSource.LEARNED
    assert pattern.priority == 140
    assert pattern.observations == 0
    assert pattern.confidence == 0.6
    stored = service.suggestions.get(suggestion.id)
    assert stored.status == SuggestionStatus.APPROVED
    assert stored.learned_pattern_id == pattern.id
    assert stored.reviewed_by == "curator"

    result = PatternSelector(service.repository).select(FieldType.PRICE, "Donation 250 lang")
    assert result.pattern_id == pattern.id
    assert result.canonical() == "250"


def test_reject_leaves_store_untouched(tmp_path: Path) -> None:
    service = _service(tmp_path)
    suggestion = _suggest(service)

    rejected = service.reject(suggestion.id)

    assert rejected.status == SuggestionStatus.REJECTED
    assert len(service.repository) == 0
    with pytest.raises(InvalidPatternError):
        service.approve(suggestion.id)


def test_invalid_regex_is_refused(tmp_path: Path) -> None:
    service = _service(tmp_path)

    with pytest.raises(InvalidPatternError):
        _suggest(service, regex_source=r"donation \d+")
    with pytest.raises(InvalidPatternError):
        _suggest(service, regex_source=r"(donation")


def test_duplicate_pending_suggestion_is_refused(tmp_path: Path) -> None:
    service = _service(tmp_path)
    _suggest(service)

    with pytest.raises(InvalidPatternError):
        _suggest(service, regex_source=r"donation\s+(\d+)")


def test_raw_text_defaults_to_correction_text(tmp_path: Path) -> None:
    service = _service(tmp_path)
    correction = Correction(
        field_type=FieldType.PRICE,
        corrected_value="200",
        post_id="post-9",
        original_text="donation 200 at the door",
    )

    suggestion = _suggest(service, raw_text=None, correction=correction)

    assert suggestion.raw_text == "donation 200 at the door"
    assert suggestion.correction_id == correction.id


def test_suggestions_persist(tmp_path: Path) -> None:
    service = _service(tmp_path)
    suggestion = _suggest(service)

    reloaded = PatternSuggestionTable(table_path=tmp_path / "suggestions.json")

    assert reloaded.get(suggestion.id).correct_value == "200"
    assert len(reloaded) == 1


def test_unknown_suggestion_raises(tmp_path: Path) -> None:
    with pytest.raises(SuggestionNotFound):
        _service(tmp_path).approve("missing")


def test_corrupt_suggestion_table(tmp_path: Path) -> None:
    path = tmp_path / "suggestions.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(RepositoryUnavailable):
        PatternSuggestionTable(table_path=path)
