"""Extraction package exports."""

from pattern_engine.extraction.ai_collaborator import (
    AICollaborator,
    AIRequest,
    AISuggestion,
    LLMEventExtractor,
)
from pattern_engine.extraction.models import (
    CanonicalValue,
    DateValue,
    ExtractionResult,
    FieldProvenance,
    MatchKind,
    MoneyValue,
    PostInput,
    StructuredExtraction,
    TextValue,
    TimeValue,
    UrlValue,
)
from pattern_engine.extraction.normalizers import (
    FieldNormalizer,
    NormalizationContext,
    NormalizationFailure,
)
from pattern_engine.extraction.selector import PatternSelector

__all__ = [
    "AICollaborator",
    "AIRequest",
    "AISuggestion",
    "CanonicalValue",
    "DateValue",
    "ExtractionResult",
    "FieldNormalizer",
    "FieldProvenance",
    "LLMEventExtractor",
    "MatchKind",
    "MoneyValue",
    "NormalizationContext",
    "NormalizationFailure",
    "PatternSelector",
    "PostInput",
    "StructuredExtraction",
    "TextValue",
    "TimeValue",
    "UrlValue",
]
