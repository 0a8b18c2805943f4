"""Tests for capture normalization."""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from decimal import Decimal

from pattern_engine.extraction.models import DateValue, MoneyValue, TextValue, TimeValue, UrlValue
from pattern_engine.extraction.normalizers import (
    FieldNormalizer,
    NormalizationContext,
    NormalizationFailure,
    prepare_text,
)
from pattern_engine.storage.schemas import NormalizationTag

DEC_1_2024 = NormalizationContext(reference_time=datetime(2024, 12, 1, 9, 0, tzinfo=UTC))


def _normalize(tag: NormalizationTag, raw: str, context: NormalizationContext = DEC_1_2024):
    return FieldNormalizer().normalize(tag, raw, context)


def test_every_tag_has_a_handler() -> None:
    normalizer = FieldNormalizer()

    for tag in NormalizationTag:
        outcome = normalizer.normalize(tag, "", DEC_1_2024)
        assert isinstance(outcome, NormalizationFailure)
        assert outcome.reason == "empty capture"


def test_failure_is_falsy() -> None:
    failure = _normalize(NormalizationTag.MONTH_FIRST_DATE, "Foo 12")

    assert isinstance(failure, NormalizationFailure)
    assert not failure


def test_month_first_date_with_year() -> None:
    value = _normalize(NormalizationTag.MONTH_FIRST_DATE, "Dec 20, 2024")

    assert value == DateValue(value=date(2024, 12, 20))
    assert value.canonical() == "2024-12-20"


def test_month_first_date_accepts_full_names_and_ordinals() -> None:
    value = _normalize(NormalizationTag.MONTH_FIRST_DATE, "January 5th")

    assert value.value == date(2025, 1, 5)


def test_yearless_date_uses_next_occurrence() -> None:
    later = NormalizationContext(reference_time=datetime(2024, 12, 25, tzinfo=UTC))

    same_day = _normalize(NormalizationTag.MONTH_FIRST_DATE, "Dec 25", later)
    passed = _normalize(NormalizationTag.MONTH_FIRST_DATE, "Dec 20", later)

    assert same_day.value == date(2024, 12, 25)
    assert passed.value == date(2025, 12, 20)


def test_leap_day_without_year_finds_next_leap_year() -> None:
    context = NormalizationContext(reference_time=datetime(2025, 1, 10, tzinfo=UTC))

    value = _normalize(NormalizationTag.MONTH_FIRST_DATE, "Feb 29", context)

    assert value.value == date(2028, 2, 29)


def test_impossible_dates_fail() -> None:
    assert isinstance(_normalize(NormalizationTag.MONTH_FIRST_DATE, "Feb 30"), NormalizationFailure)
    assert isinstance(
        _normalize(NormalizationTag.MONTH_FIRST_DATE, "Feb 29, 2025"), NormalizationFailure
    )
    assert isinstance(
        _normalize(NormalizationTag.NUMERIC_DAY_MONTH_DATE, "32.01"), NormalizationFailure
    )


def test_day_first_date() -> None:
    value = _normalize(NormalizationTag.DAY_FIRST_DATE, "14th of February 2025")

    assert value.value == date(2025, 2, 14)


def test_numeric_dates_are_day_first() -> None:
    value = _normalize(NormalizationTag.NUMERIC_DAY_MONTH_DATE, "13.12")
    with_year = _normalize(NormalizationTag.NUMERIC_DAY_MONTH_DATE, "05/01/25")

    assert value.value == date(2024, 12, 13)
    assert with_year.value == date(2025, 1, 5)


def test_iso_date() -> None:
    assert _normalize(NormalizationTag.ISO_DATE, "2025-03-08").value == date(2025, 3, 8)


def test_month_range_within_one_month() -> None:
    value = _normalize(NormalizationTag.MONTH_FIRST_DATE_RANGE, "Dec 20-22, 2024")

    assert value.value == date(2024, 12, 20)
    assert value.end == date(2024, 12, 22)


def test_month_range_across_new_year() -> None:
    value = _normalize(NormalizationTag.MONTH_FIRST_DATE_RANGE, "Dec 30 - Jan 2")

    assert value.value == date(2024, 12, 30)
    assert value.end == date(2025, 1, 2)


def test_24_hour_time() -> None:
    assert _normalize(NormalizationTag.TIME_24H, "22:30") == TimeValue(value=time(22, 30))
    assert isinstance(_normalize(NormalizationTag.TIME_24H, "25:00"), NormalizationFailure)


def test_12_hour_time() -> None:
    assert _normalize(NormalizationTag.TIME_12H, "10PM").value == time(22, 0)
    assert _normalize(NormalizationTag.TIME_12H, "7:30 p.m.").value == time(19, 30)
    assert _normalize(NormalizationTag.TIME_12H, "12am").value == time(0, 0)
    assert isinstance(_normalize(NormalizationTag.TIME_12H, "13pm"), NormalizationFailure)


def test_12_hour_range_shares_meridiem() -> None:
    value = _normalize(NormalizationTag.TIME_12H_RANGE, "8-11pm")

    assert value.value == time(20, 0)
    assert value.end == time(23, 0)


def test_12_hour_range_into_the_morning() -> None:
    explicit = _normalize(NormalizationTag.TIME_12H_RANGE, "10pm - 2am")
    implied = _normalize(NormalizationTag.TIME_12H_RANGE, "9-2am")

    assert (explicit.value, explicit.end) == (time(22, 0), time(2, 0))
    assert implied.value == time(21, 0)


def test_named_times() -> None:
    assert _normalize(NormalizationTag.NAMED_TIME, "Midnight").value == time(0, 0)
    assert _normalize(NormalizationTag.NAMED_TIME, "noon").value == time(12, 0)
    assert isinstance(_normalize(NormalizationTag.NAMED_TIME, "dusk"), NormalizationFailure)


def test_peso_amounts() -> None:
    assert _normalize(NormalizationTag.PESO_AMOUNT, "₱500") == MoneyValue(amount=Decimal("500"))
    assert _normalize(NormalizationTag.PESO_AMOUNT, "PHP 1,500.50").amount == Decimal("1500.50")
    assert _normalize(NormalizationTag.PESO_AMOUNT, "P 300").canonical() == "300"


def test_peso_amount_rejects_clock_times_and_huge_values() -> None:
    assert isinstance(_normalize(NormalizationTag.PESO_AMOUNT, "P7pm"), NormalizationFailure)
    assert isinstance(
        _normalize(NormalizationTag.PESO_AMOUNT, "₱2,000,000"), NormalizationFailure
    )


def test_free_entry() -> None:
    libre = _normalize(NormalizationTag.FREE_ENTRY, "Libre")
    shouted = _normalize(NormalizationTag.FREE_ENTRY, "FREE ENTRANCE!")

    assert libre == MoneyValue(amount=Decimal("0"), is_free=True)
    assert shouted.is_free is True
    assert isinstance(_normalize(NormalizationTag.FREE_ENTRY, "freedom"), NormalizationFailure)


def test_price_or_free() -> None:
    assert _normalize(NormalizationTag.PRICE_OR_FREE, "gratis").is_free is True
    assert _normalize(NormalizationTag.PRICE_OR_FREE, "₱350").amount == Decimal("350")


def test_free_text_urls() -> None:
    bare = _normalize(NormalizationTag.FREE_TEXT_URL, "www.example.com")
    full = _normalize(NormalizationTag.FREE_TEXT_URL, "https://Tickets.Example.COM/Event?id=1).")

    assert bare == UrlValue(url="https://www.example.com")
    assert full.url == "https://tickets.example.com/Event?id=1"
    assert isinstance(_normalize(NormalizationTag.FREE_TEXT_URL, "localhost"), NormalizationFailure)
    assert isinstance(
        _normalize(NormalizationTag.FREE_TEXT_URL, "ftp://files.example.com"), NormalizationFailure
    )


def test_shortener_urls_need_a_path() -> None:
    assert _normalize(NormalizationTag.SHORTENER_URL, "bit.ly/xmas-rave").url == (
        "https://bit.ly/xmas-rave"
    )
    assert isinstance(_normalize(NormalizationTag.SHORTENER_URL, "https://bit.ly"), NormalizationFailure)
    assert isinstance(
        _normalize(NormalizationTag.SHORTENER_URL, "example.com/abc"), NormalizationFailure
    )


def test_venue_text_strips_markers_and_labels() -> None:
    pinned = _normalize(NormalizationTag.PIN_EMOJI_VENUE, "📍 The Red Room, Poblacion")
    labelled = _normalize(NormalizationTag.VENUE_TEXT, "Venue: Nokal.")

    assert pinned == TextValue(text="The Red Room, Poblacion")
    assert labelled.text == "Nokal"


def test_venue_text_rejects_numbers_and_essays() -> None:
    assert isinstance(_normalize(NormalizationTag.VENUE_TEXT, "📍 12345"), NormalizationFailure)
    assert isinstance(_normalize(NormalizationTag.VENUE_TEXT, "x" * 150), NormalizationFailure)


def test_prepare_text_folds_typography() -> None:
    text = prepare_text("Dec 20 \u2013 22 \u201cfree\u201d\u200b \uff03\uff11")

    assert text == 'Dec 20 - 22 "free" #1'
    assert prepare_text(None) == ""


def test_default_context_uses_now() -> None:
    value = FieldNormalizer().normalize(NormalizationTag.ISO_DATE, "2030-01-01")

    assert value.value == date(2030, 1, 1)


def test_relative_dates_anchor_to_reference() -> None:
    assert _normalize(NormalizationTag.RELATIVE_DATE, "Tonight").value == date(2024, 12, 1)
    assert _normalize(NormalizationTag.RELATIVE_DATE, "today!").value == date(2024, 12, 1)
    assert _normalize(NormalizationTag.RELATIVE_DATE, "tomorrow").value == date(2024, 12, 2)
    assert _normalize(NormalizationTag.RELATIVE_DATE, "bukas").value == date(2024, 12, 2)


def test_this_weekend_spans_friday_to_sunday() -> None:
    wednesday = NormalizationContext(reference_time=datetime(2024, 12, 4, 18, 0, tzinfo=UTC))

    midweek = _normalize(NormalizationTag.RELATIVE_DATE, "this  weekend", wednesday)
    # Dec 1, 2024 is a Sunday
    sunday = _normalize(NormalizationTag.RELATIVE_DATE, "this weekend")

    assert midweek == DateValue(value=date(2024, 12, 6), end=date(2024, 12, 8))
    assert sunday == DateValue(value=date(2024, 12, 1))


def test_unknown_relative_phrase_fails() -> None:
    outcome = _normalize(NormalizationTag.RELATIVE_DATE, "next month")

    assert isinstance(outcome, NormalizationFailure)
