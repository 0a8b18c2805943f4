"""String normalization for venue names before comparison."""

from __future__ import annotations

import re
import unicodedata
from pathlib import Path
from typing import Dict, List

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator


class VenueNameResult(BaseModel):
    """Result of a normalization call."""

    model_config = ConfigDict(frozen=True)

    original: str
    normalized: str
    display: str


class VenueNameRules(BaseModel):
    """Normalization rule set loaded from YAML."""

    model_config = ConfigDict(extra="ignore")

    unicode_form: str = "NFKC"
    punctuation_replacements: Dict[str, str] = Field(
        default_factory=lambda: {
            "“": '"',
            "”": '"',
            "‘": "'",
            "’": "'",
            "\u2013": "-",
            "\u2014": "-",
            "&": " and ",
            "·": " ",
            "•": " ",
        }
    )
    strip_characters: List[str] = Field(
        default_factory=lambda: ["\u200b", "\u200c", "\u200d", "\ufeff", "📍", "📌"]
    )
    strip_articles: List[str] = Field(default_factory=lambda: ["the", "ang"])
    enable_article_stripping: bool = True

    @classmethod
    def from_yaml(cls, rules_file: Path | None) -> "VenueNameRules":
        """Load rules from YAML, merging with defaults."""
        base = cls()

        if rules_file is None:
            return base

        if not rules_file.exists():
            raise FileNotFoundError(f"Venue normalization rules file not found: {rules_file}")

        loaded = yaml.safe_load(rules_file.read_text(encoding="utf-8")) or {}
        if not isinstance(loaded, dict):
            raise ValueError("Venue normalization rules must be a mapping/dict.")

        merged = base.model_dump()
        for key, value in loaded.items():
            if key not in merged:
                continue
            if isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = {**merged[key], **value}
            else:
                merged[key] = value

        return cls(**merged)

    @field_validator("unicode_form")
    @classmethod
    def _validate_unicode_form(cls, value: str) -> str:
        valid_forms = {"NFC", "NFD", "NFKC", "NFKD"}
        upper_value = value.upper()
        if upper_value not in valid_forms:
            raise ValueError(f"Invalid unicode_form '{value}'. Must be one of {valid_forms}.")
        return upper_value


class VenueNameNormalizer:
    """Fold venue names to a comparison form.

    ``normalized`` is lowercase, punctuation-free and article-free and is what
    fuzzy scoring sees. ``display`` keeps the original casing.
    """

    def __init__(
        self,
        rules_path: str | Path | None = None,
        rules: VenueNameRules | None = None,
    ) -> None:
        rules_file = Path(rules_path) if rules_path else None
        self.rules = rules or VenueNameRules.from_yaml(rules_file)

        self._punctuation_translation = {
            ord(src): dest for src, dest in self.rules.punctuation_replacements.items()
        }
        self._unwanted_punct_re = re.compile(r"[^\w\s']|_")
        self._whitespace_re = re.compile(r"\s+")
        if self.rules.strip_articles:
            articles_pattern = "|".join(re.escape(a) for a in self.rules.strip_articles)
            self._articles_re = re.compile(rf"^({articles_pattern})\s+", re.IGNORECASE)
        else:
            self._articles_re = None

        if rules_file:
            logger.info(f"Loaded venue normalization rules from {rules_file}")

    def normalize(self, text: str | None) -> VenueNameResult:
        if text is None:
            return VenueNameResult(original="", normalized="", display="")

        working = text.strip()
        if not working:
            return VenueNameResult(original=text, normalized="", display="")

        display = self._collapse_whitespace(self._fold(working)).strip()
        normalized = self._unwanted_punct_re.sub(" ", display).replace("'", "")
        normalized = self._collapse_whitespace(normalized).strip()
        if self.rules.enable_article_stripping:
            normalized = self._strip_leading_articles(normalized)

        return VenueNameResult(original=text, normalized=normalized.casefold(), display=display)

    def _fold(self, text: str) -> str:
        text = unicodedata.normalize(self.rules.unicode_form, text)
        for ch in self.rules.strip_characters:
            text = text.replace(ch, "")
        return text.translate(self._punctuation_translation)

    def _strip_leading_articles(self, text: str) -> str:
        if not self._articles_re:
            return text
        stripped = self._articles_re.sub("", text, count=1)
        return stripped if stripped.strip() else text

    def _collapse_whitespace(self, text: str) -> str:
        return self._whitespace_re.sub(" ", text)


def name_key(text: str | None) -> str:
    """Case-insensitive identity key used for exact and alias matches."""
    return " ".join((text or "").split()).casefold()
