"""Per-post extraction: pattern bank first, AI collaborator where it is weak.

The orchestrator never writes to the pattern store. A ``RepositoryUnavailable``
raised by the selector or the venue resolver propagates to the caller, which
may retry the whole post.
"""

from __future__ import annotations

import re
import threading
import unicodedata
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from pattern_engine.errors import CollaboratorError, CollaboratorTimeout
from pattern_engine.extraction.ai_collaborator import AICollaborator, AIRequest, AISuggestion
from pattern_engine.extraction.models import (
    DateValue,
    ExtractionMethod,
    ExtractionResult,
    FieldProvenance,
    MoneyValue,
    PostInput,
    StructuredExtraction,
    TextValue,
    TimeValue,
    UrlValue,
)
from pattern_engine.extraction.normalizers import prepare_text
from pattern_engine.extraction.selector import PatternSelector
from pattern_engine.normalization.venue_resolver import VenueResolver
from pattern_engine.storage.schemas import FieldType
from pattern_engine.utils.config import AIConfig, OrchestratorConfig

_HASHTAG_RE = re.compile(r"#\w+")
_TITLE_TRIM = " \t-|:•·*~_.,!"


@dataclass
class _Candidate:
    """A field value plus where it came from."""

    value: Any
    method: ExtractionMethod
    confidence: float
    pattern_id: Optional[str] = None
    raw_match: Optional[str] = None

    def provenance(self) -> FieldProvenance:
        return FieldProvenance(
            extraction_method=self.method,
            pattern_id=self.pattern_id,
            confidence=self.confidence,
            raw_match=self.raw_match,
            used_fallback=self.method == "ai",
        )


class ExtractionOrchestrator:
    """Combine selector results, caption heuristics and an optional AI suggestion."""

    def __init__(
        self,
        selector: PatternSelector,
        resolver: VenueResolver,
        collaborator: AICollaborator | None = None,
        *,
        config: OrchestratorConfig | None = None,
        ai_config: AIConfig | None = None,
    ) -> None:
        self.selector = selector
        self.resolver = resolver
        self.collaborator = collaborator
        self.config = config or OrchestratorConfig()
        self.ai_config = ai_config or AIConfig()
        self._rejections = [
            (kind, re.compile(pattern, re.IGNORECASE))
            for kind, patterns in self.config.rejection_patterns.items()
            for pattern in patterns
        ]

        self._ai_slots = threading.BoundedSemaphore(self.ai_config.max_concurrent_calls)
        self._ai_executor: ThreadPoolExecutor | None = None
        if collaborator is not None:
            self._ai_executor = ThreadPoolExecutor(
                max_workers=self.ai_config.max_concurrent_calls,
                thread_name_prefix="ai-collaborator",
            )

        logger.info(
            "Initialized ExtractionOrchestrator",
            ai_enabled=collaborator is not None,
            needs_ai_threshold=self.config.needs_ai_threshold,
            review_threshold=self.config.review_threshold,
        )

    def close(self) -> None:
        if self._ai_executor is not None:
            self._ai_executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "ExtractionOrchestrator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # Public API --------------------------------------------------------
    def extract(self, post: PostInput) -> StructuredExtraction:
        """Extract a structured event record from one post."""
        text = post.combined_text()
        results = self.selector.select_all(text, reference_time=post.post_timestamp)

        regex: Dict[str, Optional[_Candidate]] = {
            field_type.value: _from_result(result) for field_type, result in results.items()
        }
        regex["title"] = self._caption_title(post.caption_text)

        review_reasons: List[str] = []
        suggestion: Optional[AISuggestion] = None
        weak_fields = self._fields_needing_ai(regex)
        if weak_fields and self.collaborator is not None:
            suggestion, failure = self._ask_collaborator(post, weak_fields)
            if failure:
                review_reasons.append(failure)

        accepted = (
            suggestion
            if suggestion is not None and suggestion.confidence >= self.ai_config.min_confidence
            else None
        )
        ai = _ai_candidates(accepted)

        chosen: Dict[str, Optional[_Candidate]] = {
            name: self._merge(name, regex.get(name), ai.get(name)) for name in regex
        }
        if chosen["venue"] is None and post.location_hint:
            chosen["venue"] = _Candidate(
                value=post.location_hint.strip(),
                method="heuristic",
                confidence=self.config.heuristic_title_confidence,
            )

        extraction = StructuredExtraction(post_id=post.post_id)
        self._apply_date(extraction, chosen["date"])
        self._apply_time(extraction, chosen["time"])
        self._apply_price(extraction, chosen["price"])
        if chosen["signup_url"] is not None:
            extraction.signup_url = chosen["signup_url"].value
        self._apply_venue(extraction, chosen["venue"], accepted, review_reasons)

        if suggestion is not None:
            extraction.is_event = suggestion.is_event
            extraction.category = suggestion.category
            extraction.ai_confidence = suggestion.confidence
            extraction.ai_reasoning = suggestion.reasoning
        self._check_rejections(extraction, post, review_reasons)

        if chosen["title"] is None:
            chosen["title"] = self._fallback_title(extraction)
            review_reasons.append("fallback_title")
        extraction.event_title = chosen["title"].value

        extraction.fields = {
            name: candidate.provenance() if candidate is not None else FieldProvenance()
            for name, candidate in chosen.items()
        }
        self._score(extraction, chosen, review_reasons)

        logger.debug(
            "Extracted post",
            post_id=post.post_id,
            confidence=round(extraction.confidence, 3),
            needs_review=extraction.needs_review,
            reasons=extraction.review_reasons,
        )
        return extraction

    # AI collaborator ---------------------------------------------------
    def _fields_needing_ai(self, regex: Dict[str, Optional[_Candidate]]) -> List[str]:
        weak: List[str] = []
        for name, candidate in regex.items():
            if self.config.merge_policy.get(name, "regex_first") == "regex_only":
                continue
            if candidate is None or candidate.confidence < self.config.needs_ai_threshold:
                weak.append(name)
        return weak

    def _ask_collaborator(
        self, post: PostInput, weak_fields: List[str]
    ) -> Tuple[Optional[AISuggestion], Optional[str]]:
        """Call the collaborator once, bounded by the semaphore and the timeout."""
        assert self._ai_executor is not None and self.collaborator is not None
        request = AIRequest(
            text=post.combined_text(),
            image_urls=list(post.image_urls),
            post_timestamp=post.post_timestamp,
            location_hint=post.location_hint,
        )

        with self._ai_slots:
            future = self._ai_executor.submit(self.collaborator.suggest, request)
            try:
                suggestion = future.result(timeout=self.ai_config.timeout_seconds)
            except (FuturesTimeout, CollaboratorTimeout):
                future.cancel()
                logger.warning(
                    "AI collaborator timed out",
                    post_id=post.post_id,
                    timeout=self.ai_config.timeout_seconds,
                )
                return None, "ai_timeout"
            except CollaboratorError as exc:
                logger.warning("AI collaborator failed", post_id=post.post_id, error=str(exc))
                return None, "ai_failed"
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "AI collaborator raised unexpectedly",
                    post_id=post.post_id,
                    error=f"{type(exc).__name__}: {exc}",
                )
                return None, "ai_failed"

        logger.debug(
            "AI suggestion received",
            post_id=post.post_id,
            weak_fields=weak_fields,
            confidence=suggestion.confidence,
        )
        return suggestion, None

    def _check_rejections(
        self, extraction: StructuredExtraction, post: PostInput, review_reasons: List[str]
    ) -> None:
        """Mark a caption matching a rejection pattern as a non-event.

        Skipped once the AI classification is at least ``rejection_ai_confidence``.
        """
        if extraction.is_event is False:
            return
        ai_confidence = extraction.ai_confidence or 0.0
        if ai_confidence >= self.config.rejection_ai_confidence:
            return
        caption = prepare_text(post.caption_text)
        for kind, regex in self._rejections:
            if regex.search(caption):
                extraction.is_event = False
                review_reasons.append(f"rejected_{kind}")
                logger.info(
                    "Caption rejected as non-event",
                    post_id=post.post_id,
                    kind=kind,
                    ai_confidence=ai_confidence,
                )
                return

    # Merging -----------------------------------------------------------
    def _merge(
        self, name: str, regex: Optional[_Candidate], ai: Optional[_Candidate]
    ) -> Optional[_Candidate]:
        policy = self.config.merge_policy.get(name, "regex_first")
        if policy == "regex_only":
            return regex
        if policy == "prefer_ai":
            return ai or regex
        if regex is not None and regex.confidence >= self.config.needs_ai_threshold:
            return regex
        return ai or regex

    def _caption_title(self, caption: str) -> Optional[_Candidate]:
        """First non-empty caption line, without emoji or hashtags."""
        for line in (caption or "").splitlines():
            cleaned = clean_title(line)
            if not cleaned:
                continue
            if len(cleaned) > self.config.max_title_length:
                return None
            return _Candidate(
                value=cleaned,
                method="heuristic",
                confidence=self.config.heuristic_title_confidence,
                raw_match=line.strip(),
            )
        return None

    def _fallback_title(self, extraction: StructuredExtraction) -> _Candidate:
        category = (extraction.category or "Event").strip().title()
        venue = extraction.venue_name
        title = f"{category} at {venue}" if venue else category
        return _Candidate(
            value=title[: self.config.max_title_length],
            method="heuristic",
            confidence=self.selector.config.floor_confidence,
        )

    # Field application -------------------------------------------------
    @staticmethod
    def _apply_date(extraction: StructuredExtraction, candidate: Optional[_Candidate]) -> None:
        if candidate is None:
            return
        start, end = candidate.value
        extraction.event_date = start
        extraction.event_end_date = end

    @staticmethod
    def _apply_time(extraction: StructuredExtraction, candidate: Optional[_Candidate]) -> None:
        if candidate is None:
            return
        start, end = candidate.value
        extraction.event_time = start
        extraction.end_time = end

    @staticmethod
    def _apply_price(extraction: StructuredExtraction, candidate: Optional[_Candidate]) -> None:
        if candidate is None:
            return
        amount, is_free = candidate.value
        extraction.price = amount
        extraction.is_free = is_free

    def _apply_venue(
        self,
        extraction: StructuredExtraction,
        candidate: Optional[_Candidate],
        suggestion: Optional[AISuggestion],
        review_reasons: List[str],
    ) -> None:
        if candidate is None:
            return
        resolution = self.resolver.resolve(candidate.value)
        extraction.venue_raw = resolution.raw_text
        extraction.venue_match_kind = resolution.match_kind
        extraction.venue_match_score = resolution.score
        if resolution.venue is not None:
            venue = resolution.venue
            extraction.venue_name = venue.name
            extraction.venue_id = venue.id
            extraction.coordinates = venue.coordinates
            extraction.venue_address = venue.address
        else:
            extraction.venue_name = resolution.raw_text
            if self.config.review_unresolved_venues:
                review_reasons.append("venue_unresolved")
        if extraction.venue_address is None and suggestion is not None:
            extraction.venue_address = suggestion.venue_address

    def _score(
        self,
        extraction: StructuredExtraction,
        chosen: Dict[str, Optional[_Candidate]],
        review_reasons: List[str],
    ) -> None:
        confidences: List[float] = []
        for name in self.config.required_fields:
            candidate = chosen.get(name)
            if candidate is None:
                review_reasons.append(f"missing_{name}")
                confidences.append(0.0)
            else:
                confidences.append(candidate.confidence)

        overall = min(confidences) if confidences else 1.0
        if overall < self.config.review_threshold:
            review_reasons.append("low_confidence")

        extraction.confidence = max(0.0, min(1.0, overall))
        extraction.review_reasons = list(dict.fromkeys(review_reasons))
        extraction.needs_review = bool(extraction.review_reasons)


def clean_title(line: str) -> str:
    """Strip hashtags, emoji and decoration from a caption line."""
    text = _HASHTAG_RE.sub(" ", line)
    text = "".join(
        ch
        for ch in text
        if unicodedata.category(ch) not in {"So", "Sk", "Cf", "Co", "Cs"} and ch != "\ufe0f"
    )
    text = " ".join(text.split())
    return text.strip(_TITLE_TRIM)


def _from_result(result: ExtractionResult) -> Optional[_Candidate]:
    value = result.normalized_value
    if value is None:
        return None

    converted: Any
    if isinstance(value, DateValue):
        converted = (value.value, value.end)
    elif isinstance(value, TimeValue):
        converted = (value.value, value.end)
    elif isinstance(value, MoneyValue):
        converted = (value.amount, value.is_free)
    elif isinstance(value, UrlValue):
        converted = value.url
    elif isinstance(value, TextValue):
        converted = value.text
    else:  # pragma: no cover
        raise TypeError(f"Unhandled canonical value: {type(value).__name__}")

    return _Candidate(
        value=converted,
        method="pattern",
        confidence=result.confidence,
        pattern_id=result.pattern_id,
        raw_match=result.raw_match,
    )


def _ai_candidates(suggestion: Optional[AISuggestion]) -> Dict[str, _Candidate]:
    if suggestion is None:
        return {}

    confidence = suggestion.confidence
    candidates: Dict[str, _Candidate] = {}

    def add(name: str, value: Any) -> None:
        candidates[name] = _Candidate(value=value, method="ai", confidence=confidence)

    if suggestion.event_title:
        add("title", suggestion.event_title)
    if suggestion.event_date is not None:
        add(FieldType.DATE.value, (suggestion.event_date, suggestion.event_end_date))
    if suggestion.event_time is not None:
        add(FieldType.TIME.value, (suggestion.event_time, suggestion.end_time))
    if suggestion.is_free:
        add(FieldType.PRICE.value, (Decimal("0"), True))
    elif suggestion.price is not None:
        add(FieldType.PRICE.value, (suggestion.price, False))
    if suggestion.venue_name:
        add(FieldType.VENUE.value, suggestion.venue_name)
    if suggestion.signup_url:
        add(FieldType.SIGNUP_URL.value, suggestion.signup_url)
    return candidates
