"""Pydantic records for extraction patterns, known venues and corrections."""

import re
from datetime import UTC, datetime
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


def _now() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid4().hex


class FieldType(str, Enum):
    """Extractable event attributes."""

    DATE = "date"
    TIME = "time"
    PRICE = "price"
    VENUE = "venue"
    SIGNUP_URL = "signup_url"


class NormalizationTag(str, Enum):
    """Canonicalization function applied to a pattern's capture."""

    MONTH_FIRST_DATE = "month_first_date"
    DAY_FIRST_DATE = "day_first_date"
    NUMERIC_DAY_MONTH_DATE = "numeric_day_month_date"
    ISO_DATE = "iso_date"
    MONTH_FIRST_DATE_RANGE = "month_first_date_range"
    RELATIVE_DATE = "relative_date"
    TIME_24H = "24_hour_time"
    TIME_12H = "12_hour_time"
    TIME_12H_RANGE = "12_hour_time_range"
    NAMED_TIME = "named_time"
    PESO_AMOUNT = "peso_amount"
    FREE_ENTRY = "free_entry"
    PRICE_OR_FREE = "price_or_free"
    FREE_TEXT_URL = "free_text_url"
    SHORTENER_URL = "shortener_url"
    PIN_EMOJI_VENUE = "pin_emoji_venue"
    VENUE_TEXT = "venue_text"


class PatternSource(str, Enum):
    """Provenance of a pattern."""

    SEEDED = "seeded"
    LEARNED = "learned"


class SuggestionStatus(str, Enum):
    """Review status of a pattern suggestion."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Pattern(BaseModel):
    """One extraction rule with its observed reliability.

    ``confidence`` is derived: the observed success rate once the pattern has
    at least one observation, the seed confidence before that.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(default_factory=_new_id, description="Opaque, immutable identifier")
    field_type: FieldType
    regex_source: str = Field(..., min_length=1)
    normalization_tag: NormalizationTag
    priority: int = Field(default=100, description="Lower is tried first")
    seed_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    is_active: bool = True
    source: PatternSource = PatternSource.SEEDED
    description: str = ""
    version: int = Field(default=1, ge=1, description="Bumped on every stored write")
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    last_used_at: Optional[datetime] = None

    @field_validator("regex_source")
    @classmethod
    def validate_regex(cls, v: str) -> str:
        """The regex must compile and expose at least one capture group."""
        try:
            compiled = re.compile(v, re.IGNORECASE)
        except re.error as exc:
            raise ValueError(f"Invalid regex: {exc}") from exc
        if compiled.groups < 1:
            raise ValueError("Pattern regex needs at least one capture group")
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def confidence(self) -> float:
        observations = self.success_count + self.failure_count
        if observations == 0:
            return self.seed_confidence
        return max(0.0, min(1.0, self.success_count / observations))

    @property
    def observations(self) -> int:
        return self.success_count + self.failure_count

    def rank_key(self) -> tuple[int, float, str]:
        """Selector total order: priority asc, confidence desc, id asc."""
        return (self.priority, -self.confidence, self.id)

    def summary(self) -> str:
        return (
            f"[{self.field_type.value}] {self.normalization_tag.value} p={self.priority} "
            f"conf={self.confidence:.2f} ({self.success_count}/{self.observations})"
        )


class Coordinates(BaseModel):
    """Latitude/longitude pair."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)


class KnownVenue(BaseModel):
    """Canonical physical location record."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(default_factory=_new_id)
    name: str = Field(..., min_length=1)
    aliases: List[str] = Field(default_factory=list)
    coordinates: Optional[Coordinates] = None
    address: Optional[str] = None
    city: Optional[str] = None
    instagram_handle: Optional[str] = None
    learned_from_corrections: bool = False
    correction_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        stripped = " ".join(v.split())
        if not stripped:
            raise ValueError("Venue name cannot be blank")
        return stripped

    @field_validator("aliases")
    @classmethod
    def dedupe_aliases(cls, v: List[str]) -> List[str]:
        """Drop blanks and case-insensitive duplicates, keeping first spelling."""
        seen: set[str] = set()
        cleaned: List[str] = []
        for alias in v:
            alias = " ".join(str(alias).split())
            key = alias.casefold()
            if not alias or key in seen:
                continue
            seen.add(key)
            cleaned.append(alias)
        return cleaned

    def all_names(self) -> List[str]:
        """Name followed by aliases, excluding aliases equal to the name."""
        name_key = self.name.casefold()
        return [self.name, *[a for a in self.aliases if a.casefold() != name_key]]

    def has_alias(self, text: str) -> bool:
        key = " ".join(text.split()).casefold()
        return any(alias.casefold() == key for alias in self.aliases)


class Correction(BaseModel):
    """Human-supplied ground truth for one extracted field."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(default_factory=_new_id)
    field_type: FieldType
    pattern_id: Optional[str] = None
    original_value: Optional[str] = None
    corrected_value: str
    post_id: str
    original_text: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)


class PatternSuggestion(BaseModel):
    """A proposed rule awaiting a reviewer's approval."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=_new_id)
    field_type: FieldType
    regex_source: str
    normalization_tag: NormalizationTag
    priority: int = 150
    seed_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    correction_id: Optional[str] = None
    raw_text: Optional[str] = None
    correct_value: str = ""
    status: SuggestionStatus = SuggestionStatus.PENDING
    learned_pattern_id: Optional[str] = None
    reviewed_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
