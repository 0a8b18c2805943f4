"""Ranked pattern selection for a single field."""

from __future__ import annotations

import re
from datetime import datetime
from functools import lru_cache
from typing import Optional

from loguru import logger

from pattern_engine.extraction.models import ExtractionResult
from pattern_engine.extraction.normalizers import (
    FieldNormalizer,
    NormalizationContext,
    NormalizationFailure,
    prepare_text,
)
from pattern_engine.storage.pattern_repository import PatternStore
from pattern_engine.storage.schemas import FieldType, Pattern
from pattern_engine.utils.config import SelectorConfig


class PatternSelector:
    """Try a field's active patterns in rank order; first normalized capture wins.

    Selection never writes to the store, so any number of threads may share
    one selector.
    """

    def __init__(
        self,
        store: PatternStore,
        normalizer: FieldNormalizer | None = None,
        config: SelectorConfig | None = None,
    ) -> None:
        self.store = store
        self.normalizer = normalizer or FieldNormalizer()
        self.config = config or SelectorConfig()
        self._compile = lru_cache(maxsize=self.config.regex_cache_size)(self._compile_regex)

    def select(
        self,
        field_type: FieldType,
        text: str,
        *,
        reference_time: Optional[datetime] = None,
    ) -> ExtractionResult:
        """Extract one field from ``text``.

        Args:
            field_type: Field to extract
            text: Caption/OCR text; may be empty
            reference_time: Anchor for year-less dates (defaults to now)

        Returns:
            ExtractionResult; ``normalized_value`` is None when nothing matched,
            in which case ``confidence`` is the configured floor.
        """
        field_type = FieldType(field_type)
        prepared = prepare_text(text)
        if not prepared.strip():
            return self._no_match(field_type)

        context = (
            NormalizationContext(reference_time=reference_time)
            if reference_time is not None
            else NormalizationContext()
        )
        patterns = sorted(self.store.list_active(field_type), key=Pattern.rank_key)

        for pattern in patterns:
            compiled = self._compile(pattern.id, pattern.regex_source)
            if compiled is None:
                continue
            match = compiled.search(prepared)
            if match is None:
                continue

            raw = capture_span(match)
            outcome = self.normalizer.normalize(pattern.normalization_tag, raw, context)
            if isinstance(outcome, NormalizationFailure):
                logger.debug(
                    "Capture rejected by normalizer",
                    pattern_id=pattern.id,
                    tag=pattern.normalization_tag.value,
                    raw=raw[:80],
                    reason=outcome.reason,
                )
                continue

            return ExtractionResult(
                field_type=field_type,
                raw_match=raw,
                normalized_value=outcome,
                pattern_id=pattern.id,
                confidence=pattern.confidence,
            )

        return self._no_match(field_type)

    def select_all(
        self,
        text: str,
        *,
        reference_time: Optional[datetime] = None,
    ) -> dict[FieldType, ExtractionResult]:
        """Run ``select`` for every field type."""
        return {
            field_type: self.select(field_type, text, reference_time=reference_time)
            for field_type in FieldType
        }

    def _no_match(self, field_type: FieldType) -> ExtractionResult:
        return ExtractionResult(
            field_type=field_type,
            confidence=self.config.floor_confidence,
        )

    @staticmethod
    def _compile_regex(pattern_id: str, regex_source: str) -> re.Pattern[str] | None:
        try:
            return re.compile(regex_source, re.IGNORECASE)
        except re.error as exc:
            logger.warning("Skipping invalid pattern regex", pattern_id=pattern_id, error=str(exc))
            return None


def capture_span(match: re.Match[str]) -> str:
    """Text a pattern captured.

    The named group ``value`` wins when present. Otherwise the span runs from
    the first participating group to the last one, so multi-group date
    patterns hand the whole "Dec 20, 2024" to the normalizer.
    """
    if "value" in match.re.groupindex and match.group("value") is not None:
        return match.group("value")

    spans = [
        match.span(index)
        for index in range(1, (match.re.groups or 0) + 1)
        if match.span(index) != (-1, -1)
    ]
    if not spans:
        return match.group(0)
    start = min(span[0] for span in spans)
    end = max(span[1] for span in spans)
    return match.string[start:end]
