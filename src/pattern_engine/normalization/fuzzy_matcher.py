"""Similarity scoring for venue names.

The default scorer is trigram overlap with PostgreSQL ``pg_trgm`` semantics:
each word is padded with two leading spaces and one trailing space, and the
score is |A ∩ B| / |A ∪ B| over the two trigram sets. RapidFuzz scorers can be
selected instead.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, List, Sequence

from loguru import logger
from pydantic import BaseModel, ConfigDict
from rapidfuzz import fuzz

from pattern_engine.normalization.string_normalizer import VenueNameNormalizer

_WORD_RE = re.compile(r"[^\W_]+")


def trigrams(text: str) -> frozenset[str]:
    grams: set[str] = set()
    for word in _WORD_RE.findall(text.lower()):
        padded = f"  {word} "
        grams.update(padded[i : i + 3] for i in range(len(padded) - 2))
    return frozenset(grams)


def trigram_similarity(left: str, right: str) -> float:
    """pg_trgm ``similarity()``: Jaccard overlap of trigram sets, 0.0-1.0."""
    left_grams = trigrams(left)
    right_grams = trigrams(right)
    if not left_grams or not right_grams:
        return 0.0
    return len(left_grams & right_grams) / len(left_grams | right_grams)


def _rapidfuzz(scorer: Callable[..., float]) -> Callable[[str, str], float]:
    def score(left: str, right: str) -> float:
        return scorer(left, right) / 100.0

    return score


SCORERS: Dict[str, Callable[[str, str], float]] = {
    "trigram": trigram_similarity,
    "token_set_ratio": _rapidfuzz(fuzz.token_set_ratio),
    "wratio": _rapidfuzz(fuzz.WRatio),
}


class FuzzyMatchCandidate(BaseModel):
    """Score of one query against one candidate name."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    source_normalized: str
    target_normalized: str
    score: float  # 0-1
    threshold: float  # 0-1
    passed: bool


class FuzzyMatcher:
    """Score free-text venue strings against known names."""

    def __init__(
        self,
        threshold: float = 0.35,
        scorer: str = "trigram",
        normalizer: VenueNameNormalizer | None = None,
    ) -> None:
        if scorer not in SCORERS:
            raise ValueError(f"Unknown scorer '{scorer}'. Must be one of {sorted(SCORERS)}.")
        self.threshold = threshold
        self.scorer_name = scorer
        self._scorer = SCORERS[scorer]
        self.normalizer = normalizer or VenueNameNormalizer()

        logger.info("Initialized FuzzyMatcher ({}) with threshold {:.2f}", scorer, threshold)

    def match_pair(self, source: str, target: str) -> FuzzyMatchCandidate:
        source_norm = self._normalize(source)
        target_norm = self._normalize(target)
        score = self._score(source_norm, target_norm)
        return FuzzyMatchCandidate(
            source=source,
            target=target,
            source_normalized=source_norm,
            target_normalized=target_norm,
            score=score,
            threshold=self.threshold,
            passed=score > self.threshold,
        )

    def match_batch(self, source: str, choices: Sequence[str]) -> List[FuzzyMatchCandidate]:
        """Score ``source`` against every choice, best first (ties keep input order)."""
        candidates = [self.match_pair(source, choice) for choice in choices]
        return sorted(candidates, key=lambda item: item.score, reverse=True)

    def _normalize(self, value: str) -> str:
        return self.normalizer.normalize(value).normalized

    def _score(self, source_norm: str, target_norm: str) -> float:
        if not source_norm or not target_norm:
            return 0.0
        return max(0.0, min(1.0, self._scorer(source_norm, target_norm)))
