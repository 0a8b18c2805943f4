"""Shared data models for extraction modules."""

from datetime import UTC, date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from pattern_engine.storage.schemas import Coordinates, FieldType


class DateValue(BaseModel):
    """Calendar date, optionally the start of a range."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["date"] = "date"
    value: date
    end: Optional[date] = None

    def canonical(self) -> str:
        return self.value.isoformat()


class TimeValue(BaseModel):
    """Wall-clock time, optionally the start of a range."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["time"] = "time"
    value: time
    end: Optional[time] = None

    def canonical(self) -> str:
        return self.value.strftime("%H:%M")


class MoneyValue(BaseModel):
    """Entrance price. ``is_free`` marks an explicit free-entry statement."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["money"] = "money"
    amount: Decimal = Field(..., ge=0)
    currency: str = "PHP"
    is_free: bool = False

    def canonical(self) -> str:
        if self.amount == self.amount.to_integral_value():
            return str(int(self.amount))
        return f"{self.amount:.2f}"


class UrlValue(BaseModel):
    """Absolute URL."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["url"] = "url"
    url: str

    def canonical(self) -> str:
        return self.url


class TextValue(BaseModel):
    """Trimmed free text (venue names before resolution)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str

    def canonical(self) -> str:
        return self.text


CanonicalValue = Annotated[
    Union[DateValue, TimeValue, MoneyValue, UrlValue, TextValue],
    Field(discriminator="kind"),
]


class ExtractionResult(BaseModel):
    """Outcome of running one field's pattern chain over a text.

    ``used_fallback`` is set only when an AI suggestion supplied the value;
    a regex chain that matched nothing leaves it False.
    """

    model_config = ConfigDict(frozen=True)

    field_type: FieldType
    raw_match: Optional[str] = None
    normalized_value: Optional[CanonicalValue] = None
    pattern_id: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    used_fallback: bool = False

    @property
    def matched(self) -> bool:
        return self.normalized_value is not None

    def canonical(self) -> Optional[str]:
        return self.normalized_value.canonical() if self.normalized_value is not None else None


class MatchKind(str, Enum):
    """How a raw venue string was tied to a known venue."""

    EXACT = "exact"
    ALIAS = "alias"
    FUZZY = "fuzzy"
    UNMATCHED = "unmatched"


class PostInput(BaseModel):
    """One ingested post."""

    post_id: str = Field(default_factory=lambda: uuid4().hex)
    caption_text: str = ""
    ocr_text: Optional[str] = None
    image_urls: List[str] = Field(default_factory=list)
    post_timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    owner_username: Optional[str] = None
    location_hint: Optional[str] = None

    def combined_text(self) -> str:
        """Caption first, OCR text after, so caption matches win on position."""
        parts = [self.caption_text or ""]
        if self.ocr_text:
            parts.append(self.ocr_text)
        return "\n".join(part for part in parts if part)


ExtractionMethod = Literal["pattern", "ai", "heuristic", "none"]


class FieldProvenance(BaseModel):
    """Where a field value in a StructuredExtraction came from."""

    extraction_method: ExtractionMethod = "none"
    pattern_id: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    raw_match: Optional[str] = None
    used_fallback: bool = False


class StructuredExtraction(BaseModel):
    """Merged per-post extraction record handed to downstream persistence."""

    post_id: str
    event_title: Optional[str] = None
    event_date: Optional[date] = None
    event_end_date: Optional[date] = None
    event_time: Optional[time] = None
    end_time: Optional[time] = None
    venue_name: Optional[str] = None
    venue_raw: Optional[str] = None
    venue_id: Optional[str] = None
    venue_match_kind: MatchKind = MatchKind.UNMATCHED
    venue_match_score: float = 0.0
    coordinates: Optional[Coordinates] = None
    venue_address: Optional[str] = None
    price: Optional[Decimal] = None
    is_free: Optional[bool] = None
    signup_url: Optional[str] = None
    category: Optional[str] = None
    is_event: Optional[bool] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    needs_review: bool = False
    review_reasons: List[str] = Field(default_factory=list)
    fields: Dict[str, FieldProvenance] = Field(default_factory=dict)
    ai_confidence: Optional[float] = None
    ai_reasoning: Optional[str] = None
