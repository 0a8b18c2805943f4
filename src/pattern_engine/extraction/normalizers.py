"""Canonicalization of raw regex captures.

Every ``NormalizationTag`` maps to exactly one handler. Handlers are pure: the
only outside input is the reference timestamp used to place year-less dates.
A capture that cannot be turned into a valid value comes back as a
``NormalizationFailure``; the selector treats that like a non-match.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Optional, Union
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field

from pattern_engine.extraction.models import (
    CanonicalValue,
    DateValue,
    MoneyValue,
    TextValue,
    TimeValue,
    UrlValue,
)
from pattern_engine.storage.schemas import NormalizationTag

MONTHS: Dict[str, int] = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
}

SHORTENER_HOSTS = frozenset(
    {
        "bit.ly",
        "forms.gle",
        "tinyurl.com",
        "goo.gl",
        "linktr.ee",
        "lnkd.in",
        "t.co",
        "ow.ly",
        "rb.gy",
        "shorturl.at",
        "tiny.cc",
    }
)

MAX_VENUE_LENGTH = 100
MAX_PRICE = Decimal("1000000")
YEAR_SEARCH_HORIZON = 5

_TEXT_TRANSLATION = {
    ord("“"): '"',
    ord("”"): '"',
    ord("‘"): "'",
    ord("’"): "'",
    ord("\u2013"): "-",
    ord("\u2014"): "-",
    ord("\u2212"): "-",
    ord("\u200b"): None,
    ord("\u200c"): None,
    ord("\u200d"): None,
    ord("\ufeff"): None,
}

_ORDINAL = r"(?:st|nd|rd|th)?"
_MONTH_WORD = r"([a-z]{3,9})\.?"
_YEAR = r"(?:,?\s*('\d{2}|\d{4}))?"
_RANGE_SEP = r"\s*(?:-|to|until|hanggang)\s*"

_MONTH_FIRST_RE = re.compile(rf"{_MONTH_WORD}\s*(\d{{1,2}}){_ORDINAL}{_YEAR}", re.IGNORECASE)
_DAY_FIRST_RE = re.compile(
    rf"(\d{{1,2}}){_ORDINAL}\s*(?:of\s+)?{_MONTH_WORD}{_YEAR}", re.IGNORECASE
)
_NUMERIC_RE = re.compile(r"(\d{1,2})[./-](\d{1,2})(?:[./-](\d{4}|\d{2}))?(?!\d)")
_ISO_RE = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")
_MONTH_RANGE_RE = re.compile(
    rf"{_MONTH_WORD}\s*(\d{{1,2}}){_ORDINAL}{_RANGE_SEP}(?:{_MONTH_WORD}\s*)?(\d{{1,2}}){_ORDINAL}{_YEAR}",
    re.IGNORECASE,
)

# days after the reference date; "weekend" is handled separately
_RELATIVE_DAYS = {
    "today": 0,
    "tonight": 0,
    "mamayang gabi": 0,
    "tomorrow": 1,
    "tmrw": 1,
    "bukas": 1,
}
_FRIDAY = 4

_MERIDIEM = r"([ap])\.?\s*m\.?"
_TIME_24H_RE = re.compile(r"(\d{1,2}):(\d{2})(?!\d)")
_TIME_12H_RE = re.compile(rf"(\d{{1,2}})(?:[:.](\d{{2}}))?\s*{_MERIDIEM}", re.IGNORECASE)
_TIME_12H_RANGE_RE = re.compile(
    rf"(\d{{1,2}})(?:[:.](\d{{2}}))?\s*(?:{_MERIDIEM})?{_RANGE_SEP}"
    rf"(\d{{1,2}})(?:[:.](\d{{2}}))?\s*{_MERIDIEM}",
    re.IGNORECASE,
)
_NAMED_TIMES = {"midnight": time(0, 0), "noon": time(12, 0), "midday": time(12, 0)}

_CURRENCY_PREFIX_RE = re.compile(r"^(?:₱|php\.?|p(?=\s*\d))\s*", re.IGNORECASE)
_AMOUNT_RE = re.compile(r"^(\d{1,3}(?:,\d{3})+|\d+)(?:\.(\d{1,2}))?(?!\d)")
_MERIDIEM_SUFFIX_RE = re.compile(r"^\s*[ap]\.?\s*m\b", re.IGNORECASE)
_FREE_RE = re.compile(
    r"^(?:free|libre|gratis)(?:\s+(?:entrance|entry|admission|ang\s+entrance))?$",
    re.IGNORECASE,
)

_VENUE_MARKERS = ("📍", "📌", "🗺️", "🗺", "🏠")
_VENUE_LABEL_RE = re.compile(r"^(?:venue|location|where|place|lugar)\s*[:\-]\s*", re.IGNORECASE)
_VENUE_TRIM = " \t\r\n-:;,.!|•·*~_\"'()[]"
_HAS_LETTER_RE = re.compile(r"[^\W\d_]")


class NormalizationContext(BaseModel):
    """Inputs a handler may need beyond the capture itself."""

    model_config = ConfigDict(frozen=True)

    reference_time: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def reference_date(self) -> date:
        return self.reference_time.date()


class NormalizationFailure(BaseModel):
    """A capture that matched a regex but is not a valid value."""

    model_config = ConfigDict(frozen=True)

    tag: NormalizationTag
    raw: str
    reason: str

    def __bool__(self) -> bool:
        return False


NormalizationOutcome = Union[CanonicalValue, NormalizationFailure]


class _Invalid(ValueError):
    """Raised inside handlers; converted to NormalizationFailure at the boundary."""


def prepare_text(text: str | None) -> str:
    """Fold OCR/typography noise before matching (NFKC, dashes, zero-width chars)."""
    if not text:
        return ""
    return unicodedata.normalize("NFKC", text).translate(_TEXT_TRANSLATION)


class FieldNormalizer:
    """Dispatch a raw capture to the handler for its normalization tag."""

    def __init__(self) -> None:
        self._handlers: Dict[
            NormalizationTag, Callable[[str, NormalizationContext], CanonicalValue]
        ] = {
            NormalizationTag.MONTH_FIRST_DATE: self._month_first_date,
            NormalizationTag.DAY_FIRST_DATE: self._day_first_date,
            NormalizationTag.NUMERIC_DAY_MONTH_DATE: self._numeric_day_month_date,
            NormalizationTag.ISO_DATE: self._iso_date,
            NormalizationTag.MONTH_FIRST_DATE_RANGE: self._month_first_date_range,
            NormalizationTag.RELATIVE_DATE: self._relative_date,
            NormalizationTag.TIME_24H: self._time_24h,
            NormalizationTag.TIME_12H: self._time_12h,
            NormalizationTag.TIME_12H_RANGE: self._time_12h_range,
            NormalizationTag.NAMED_TIME: self._named_time,
            NormalizationTag.PESO_AMOUNT: self._peso_amount,
            NormalizationTag.FREE_ENTRY: self._free_entry,
            NormalizationTag.PRICE_OR_FREE: self._price_or_free,
            NormalizationTag.FREE_TEXT_URL: self._free_text_url,
            NormalizationTag.SHORTENER_URL: self._shortener_url,
            NormalizationTag.PIN_EMOJI_VENUE: self._venue,
            NormalizationTag.VENUE_TEXT: self._venue,
        }
        missing = set(NormalizationTag) - set(self._handlers)
        if missing:
            raise RuntimeError(
                f"No normalization handler for tags: {sorted(t.value for t in missing)}"
            )

    def normalize(
        self,
        tag: NormalizationTag,
        raw_capture: str,
        context: NormalizationContext | None = None,
    ) -> NormalizationOutcome:
        """Convert ``raw_capture`` to its canonical value, or describe why not."""
        tag = NormalizationTag(tag)
        context = context or NormalizationContext()
        raw = (raw_capture or "").strip()
        if not raw:
            return NormalizationFailure(tag=tag, raw=raw_capture or "", reason="empty capture")

        try:
            return self._handlers[tag](raw, context)
        except (_Invalid, ValueError, InvalidOperation) as exc:
            return NormalizationFailure(tag=tag, raw=raw, reason=str(exc) or type(exc).__name__)

    # Dates -------------------------------------------------------------
    def _month_first_date(self, raw: str, context: NormalizationContext) -> DateValue:
        match = _MONTH_FIRST_RE.search(raw)
        if not match:
            raise _Invalid("no month/day in capture")
        month = _month_number(match.group(1))
        day = int(match.group(2))
        return DateValue(value=_resolve_date(day, month, _year(match.group(3)), context))

    def _day_first_date(self, raw: str, context: NormalizationContext) -> DateValue:
        match = _DAY_FIRST_RE.search(raw)
        if not match:
            raise _Invalid("no day/month in capture")
        day = int(match.group(1))
        month = _month_number(match.group(2))
        return DateValue(value=_resolve_date(day, month, _year(match.group(3)), context))

    def _numeric_day_month_date(self, raw: str, context: NormalizationContext) -> DateValue:
        match = _NUMERIC_RE.search(raw)
        if not match:
            raise _Invalid("no numeric day/month in capture")
        day, month = int(match.group(1)), int(match.group(2))
        return DateValue(value=_resolve_date(day, month, _year(match.group(3)), context))

    def _iso_date(self, raw: str, context: NormalizationContext) -> DateValue:
        match = _ISO_RE.search(raw)
        if not match:
            raise _Invalid("not an ISO date")
        year, month, day = (int(part) for part in match.groups())
        return DateValue(value=_resolve_date(day, month, year, context))

    def _month_first_date_range(self, raw: str, context: NormalizationContext) -> DateValue:
        match = _MONTH_RANGE_RE.search(raw)
        if not match:
            raise _Invalid("no month/day range in capture")
        start_month = _month_number(match.group(1))
        start_day = int(match.group(2))
        end_month = _month_number(match.group(3)) if match.group(3) else start_month
        end_day = int(match.group(4))
        year = _year(match.group(5))

        if year is not None and end_month < start_month:
            start = _resolve_date(start_day, start_month, year - 1, context)
        else:
            start = _resolve_date(start_day, start_month, year, context)

        end_year = start.year + 1 if (end_month, end_day) < (start_month, start_day) else start.year
        end = _resolve_date(end_day, end_month, end_year, context)
        if end < start:
            raise _Invalid("range ends before it starts")
        return DateValue(value=start, end=end)

    def _relative_date(self, raw: str, context: NormalizationContext) -> DateValue:
        """Anchor today/tonight/tomorrow/this weekend to the post's reference date."""
        phrase = " ".join(raw.lower().strip(" !.,").split())
        reference = context.reference_date
        if phrase in _RELATIVE_DAYS:
            return DateValue(value=reference + timedelta(days=_RELATIVE_DAYS[phrase]))
        if phrase in {"this weekend", "ngayong weekend"}:
            # Friday to Sunday; a post made during the weekend starts on its own day
            start = reference + timedelta(days=max(_FRIDAY - reference.weekday(), 0))
            end = reference + timedelta(days=6 - reference.weekday())
            return DateValue(value=start, end=end if end != start else None)
        raise _Invalid(f"unknown relative date '{raw}'")

    # Times -------------------------------------------------------------
    def _time_24h(self, raw: str, context: NormalizationContext) -> TimeValue:
        named = _named(raw)
        if named is not None:
            return TimeValue(value=named)
        match = _TIME_24H_RE.search(raw)
        if not match:
            raise _Invalid("no HH:MM in capture")
        return TimeValue(value=_clock(int(match.group(1)), int(match.group(2))))

    def _time_12h(self, raw: str, context: NormalizationContext) -> TimeValue:
        named = _named(raw)
        if named is not None:
            return TimeValue(value=named)
        match = _TIME_12H_RE.search(raw)
        if not match:
            raise _Invalid("no am/pm time in capture")
        hour = _hour_24(int(match.group(1)), match.group(3))
        return TimeValue(value=_clock(hour, int(match.group(2) or 0)))

    def _time_12h_range(self, raw: str, context: NormalizationContext) -> TimeValue:
        match = _TIME_12H_RANGE_RE.search(raw)
        if not match:
            raise _Invalid("no am/pm time range in capture")
        start_hour12 = int(match.group(1))
        end_hour12 = int(match.group(4))
        end_meridiem = match.group(6)
        start_meridiem = match.group(3)
        if start_meridiem is None:
            start_meridiem = end_meridiem
            if start_hour12 % 12 > end_hour12 % 12:
                # "8-2am" starts in the evening
                start_meridiem = "a" if end_meridiem.lower() == "p" else "p"
        start = _clock(_hour_24(start_hour12, start_meridiem), int(match.group(2) or 0))
        end = _clock(_hour_24(end_hour12, end_meridiem), int(match.group(5) or 0))
        return TimeValue(value=start, end=end)

    def _named_time(self, raw: str, context: NormalizationContext) -> TimeValue:
        named = _named(raw)
        if named is None:
            raise _Invalid("not a named time")
        return TimeValue(value=named)

    # Prices ------------------------------------------------------------
    def _peso_amount(self, raw: str, context: NormalizationContext) -> MoneyValue:
        text = _CURRENCY_PREFIX_RE.sub("", raw.strip(), count=1)
        match = _AMOUNT_RE.match(text)
        if not match:
            raise _Invalid("no amount after currency marker")
        if _MERIDIEM_SUFFIX_RE.match(text[match.end():]):
            raise _Invalid("amount is a clock time")
        whole = match.group(1).replace(",", "")
        cents = match.group(2)
        amount = Decimal(f"{whole}.{cents}" if cents else whole)
        if amount > MAX_PRICE:
            raise _Invalid(f"amount {amount} out of range")
        return MoneyValue(amount=amount)

    def _free_entry(self, raw: str, context: NormalizationContext) -> MoneyValue:
        token = " ".join(raw.strip(" !.,:;-*").split())
        if not _FREE_RE.match(token):
            raise _Invalid("not a free-entry statement")
        return MoneyValue(amount=Decimal("0"), is_free=True)

    def _price_or_free(self, raw: str, context: NormalizationContext) -> MoneyValue:
        try:
            return self._free_entry(raw, context)
        except _Invalid:
            return self._peso_amount(raw, context)

    # URLs --------------------------------------------------------------
    def _free_text_url(self, raw: str, context: NormalizationContext) -> UrlValue:
        parts = _split_url(raw)
        host = parts.hostname or ""
        if host in SHORTENER_HOSTS:
            return UrlValue(url=_rebuild_url(parts))
        labels = host.split(".")
        if len(labels) < 2 or not all(labels) or not re.fullmatch(r"[a-z]{2,}", labels[-1]):
            raise _Invalid(f"host '{host}' is not a domain name")
        return UrlValue(url=_rebuild_url(parts))

    def _shortener_url(self, raw: str, context: NormalizationContext) -> UrlValue:
        parts = _split_url(raw)
        if (parts.hostname or "") not in SHORTENER_HOSTS:
            raise _Invalid(f"'{parts.hostname}' is not a known shortener")
        if len(parts.path.strip("/")) == 0:
            raise _Invalid("shortener link without a path")
        return UrlValue(url=_rebuild_url(parts))

    # Venues ------------------------------------------------------------
    def _venue(self, raw: str, context: NormalizationContext) -> TextValue:
        text = raw.strip()
        for marker in _VENUE_MARKERS:
            if text.startswith(marker):
                text = text[len(marker):]
                break
        text = _VENUE_LABEL_RE.sub("", text.strip(_VENUE_TRIM))
        text = " ".join(text.strip(_VENUE_TRIM).split())
        if not _HAS_LETTER_RE.search(text):
            raise _Invalid("venue has no letters")
        if len(text) > MAX_VENUE_LENGTH:
            raise _Invalid("venue text too long")
        return TextValue(text=text)


def _month_number(token: str) -> int:
    word = token.lower().rstrip(".")
    if len(word) >= 3:
        for name, number in MONTHS.items():
            if name.startswith(word):
                return number
    raise _Invalid(f"unknown month '{token}'")


def _year(token: Optional[str]) -> Optional[int]:
    if not token:
        return None
    token = token.lstrip("'")
    year = int(token)
    return 2000 + year if len(token) == 2 else year


def _resolve_date(
    day: int, month: int, year: Optional[int], context: NormalizationContext
) -> date:
    """Build a calendar date; without a year use the next occurrence on/after the reference."""
    if not 1 <= month <= 12:
        raise _Invalid(f"month {month} out of range")
    if not 1 <= day <= 31:
        raise _Invalid(f"day {day} out of range")
    if year is not None:
        try:
            return date(year, month, day)
        except ValueError as exc:
            raise _Invalid(f"{year}-{month:02d}-{day:02d} is not a calendar date") from exc

    reference = context.reference_date
    for offset in range(YEAR_SEARCH_HORIZON):
        try:
            candidate = date(reference.year + offset, month, day)
        except ValueError:
            continue
        if candidate >= reference:
            return candidate
    raise _Invalid(f"{month:02d}-{day:02d} is not a calendar date")


def _clock(hour: int, minute: int) -> time:
    if not 0 <= hour <= 23:
        raise _Invalid(f"hour {hour} out of range")
    if not 0 <= minute <= 59:
        raise _Invalid(f"minute {minute} out of range")
    return time(hour, minute)


def _hour_24(hour12: int, meridiem: str) -> int:
    if not 1 <= hour12 <= 12:
        raise _Invalid(f"hour {hour12} out of range for a 12-hour clock")
    if meridiem.lower() == "a":
        return 0 if hour12 == 12 else hour12
    return 12 if hour12 == 12 else hour12 + 12


def _named(raw: str) -> Optional[time]:
    return _NAMED_TIMES.get(raw.strip(" !.,").lower())


def _split_url(raw: str):
    candidate = raw.strip().strip("<>\"'").rstrip(".,;:!?)]}")
    if not candidate or re.search(r"\s", candidate):
        raise _Invalid("not a single URL token")
    if not re.match(r"^[a-z][a-z0-9+.-]*://", candidate, re.IGNORECASE):
        candidate = f"https://{candidate}"
    parts = urlsplit(candidate)
    if parts.scheme.lower() not in {"http", "https"}:
        raise _Invalid(f"unsupported scheme '{parts.scheme}'")
    if not parts.hostname:
        raise _Invalid("URL has no host")
    return parts


def _rebuild_url(parts) -> str:
    netloc = parts.netloc.lower()
    return urlunsplit((parts.scheme.lower(), netloc, parts.path, parts.query, parts.fragment))
