"""LLM fallback for posts the pattern bank cannot read confidently.

The orchestrator depends only on the ``AICollaborator`` protocol. The bundled
``LLMEventExtractor`` renders a YAML prompt, calls OpenAI or Anthropic with
retries, and parses the JSON answer into an ``AISuggestion``.
"""

from __future__ import annotations

import json
import re
import time as time_module
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from pattern_engine.errors import CollaboratorError
from pattern_engine.utils.config import AIConfig
from pattern_engine.utils.llm_client import create_anthropic_client, create_openai_client


class AIRequest(BaseModel):
    """What the collaborator gets to look at."""

    text: str
    image_urls: List[str] = Field(default_factory=list)
    post_timestamp: Optional[datetime] = None
    location_hint: Optional[str] = None


class AISuggestion(BaseModel):
    """Structured guess returned by the collaborator, with its own confidence."""

    is_event: Optional[bool] = None
    event_title: Optional[str] = None
    event_date: Optional[date] = None
    event_end_date: Optional[date] = None
    event_time: Optional[time] = None
    end_time: Optional[time] = None
    venue_name: Optional[str] = None
    venue_address: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    is_free: Optional[bool] = None
    signup_url: Optional[str] = None
    category: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: Optional[str] = None

    @field_validator("event_date", "event_end_date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        if v is None or isinstance(v, date):
            return v
        try:
            return date.fromisoformat(str(v).strip()[:10])
        except ValueError:
            return None

    @field_validator("event_time", "end_time", mode="before")
    @classmethod
    def parse_time(cls, v: Any) -> Any:
        if v is None or isinstance(v, time):
            return v
        match = re.match(r"^\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*(?:([ap])\.?\s*m\b)?", str(v), re.IGNORECASE)
        if not match:
            return None
        hour, minute = int(match.group(1)), int(match.group(2))
        meridiem = (match.group(3) or "").lower()
        if meridiem and 1 <= hour <= 12:
            hour = hour % 12 + (12 if meridiem == "p" else 0)
        if hour > 23 or minute > 59:
            return None
        return time(hour, minute)

    @field_validator("price", mode="before")
    @classmethod
    def parse_price(cls, v: Any) -> Any:
        if v is None or isinstance(v, Decimal):
            return v
        cleaned = re.sub(r"[^\d.]", "", str(v))
        try:
            return Decimal(cleaned) if cleaned else None
        except InvalidOperation:
            return None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        try:
            score = float(v)
        except (TypeError, ValueError):
            return 0.0
        return max(0.0, min(score, 1.0))

    @field_validator("event_title", "venue_name", "venue_address", "signup_url", "category")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        stripped = str(v).strip()
        return stripped or None


class AICollaborator(Protocol):
    """Anything that can turn a post into an AISuggestion.

    Implementations raise ``CollaboratorError`` on failure.
    """

    def suggest(self, request: AIRequest) -> AISuggestion: ...


class LLMEventExtractor:
    """LLM-backed collaborator with provider switch, retries and JSON parsing."""

    PROMPT_KEY = "event_extraction"

    def __init__(
        self,
        config: Optional[AIConfig] = None,
        prompts_path: str | Path | None = None,
        *,
        api_key: Optional[str] = None,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self.config = config or AIConfig()
        self.llm = self.config.llm
        self.prompts_path = Path(prompts_path or self.config.prompts_file)
        self.prompts = self._load_prompts(self.prompts_path)
        self.api_key = api_key
        self._sleep = sleep_fn or time_module.sleep

        logger.info(
            "Initialized LLMEventExtractor",
            provider=self.llm.provider,
            model=self.llm.model,
            prompts=str(self.prompts_path),
        )

    def suggest(self, request: AIRequest) -> AISuggestion:
        """Ask the LLM for a structured reading of the post."""
        system, user = self._render_prompt(self.PROMPT_KEY, self._prompt_context(request))
        raw_response = self._call_llm(system=system, user=user, image_urls=request.image_urls)
        return self._parse_response(raw_response)

    # Prompt handling ---------------------------------------------------
    def _load_prompts(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"AI prompt template not found: {path}")
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Prompt template root must be a mapping/dict: {path}")
        return data

    def _render_prompt(self, key: str, context: Dict[str, Any]) -> Tuple[str, str]:
        if key not in self.prompts:
            raise KeyError(f"Prompt key not found in template: {key}")

        prompt = self.prompts.get(key) or {}
        system = str(prompt.get("system", "")).strip()
        user_template = str(prompt.get("user_template", "{text}"))

        try:
            user = user_template.format(**context)
        except KeyError as exc:
            missing = exc.args[0]
            raise KeyError(f"Missing placeholder '{missing}' in prompt context for '{key}'")
        return system, user

    @staticmethod
    def _prompt_context(request: AIRequest) -> Dict[str, Any]:
        posted = request.post_timestamp.date().isoformat() if request.post_timestamp else "unknown"
        return {
            "text": request.text,
            "post_date": posted,
            "location_hint": request.location_hint or "none",
            "image_count": len(request.image_urls),
        }

    # LLM invocation ----------------------------------------------------
    def _call_llm(self, *, system: str, user: str, image_urls: List[str]) -> str:
        attempts = max(1, self.llm.retry_attempts)
        last_error: Exception | None = None

        logger.info(f"Calling LLM for event extraction using {self.llm.provider}: {self.llm.model}")

        for attempt in range(1, attempts + 1):
            try:
                if self.llm.provider == "openai":
                    return self._call_openai(system=system, user=user, image_urls=image_urls)
                if self.llm.provider == "anthropic":
                    return self._call_anthropic(system=system, user=user)
                raise ValueError(f"Unsupported LLM provider: {self.llm.provider}")
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                logger.warning(
                    "LLM request failed",
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(exc),
                )
                if attempt >= attempts:
                    break
                backoff = min(2 ** (attempt - 1), 8)
                self._sleep(backoff)

        raise CollaboratorError(f"LLM request failed: {last_error}") from last_error

    def _call_openai(self, *, system: str, user: str, image_urls: List[str]) -> str:
        client = create_openai_client(self.config, api_key=self.api_key)

        user_content: Any = user
        if image_urls:
            user_content = [{"type": "text", "text": user}] + [
                {"type": "image_url", "image_url": {"url": url}} for url in image_urls
            ]

        response = client.chat.completions.create(
            model=self.llm.model,
            temperature=self.llm.temperature,
            max_tokens=self.llm.max_tokens,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user_content},
            ],
        )

        content = response.choices[0].message.content
        if isinstance(content, list):
            parts = []
            for item in content:
                if isinstance(item, dict):
                    parts.append(str(item.get("text", "")))
                else:
                    parts.append(str(item))
            return "\n".join(parts).strip()
        return str(content or "")

    def _call_anthropic(self, *, system: str, user: str) -> str:
        client = create_anthropic_client(self.config, api_key=self.api_key)
        message = client.messages.create(
            model=self.llm.model,
            system=system,
            messages=[{"role": "user", "content": user}],
            max_tokens=self.llm.max_tokens,
            temperature=self.llm.temperature,
        )
        parts = [getattr(block, "text", "") for block in getattr(message, "content", [])]
        return "\n".join(part for part in parts if part).strip()

    # Parsing -----------------------------------------------------------
    def _parse_response(self, response_text: str) -> AISuggestion:
        data = self._extract_json(response_text)
        if not isinstance(data, dict):
            logger.warning("Failed to parse LLM event response as JSON object")
            raise CollaboratorError("LLM response was not a JSON object")

        payload = data.get("event", data) if isinstance(data.get("event"), dict) else data
        try:
            return AISuggestion.model_validate(payload)
        except ValidationError as exc:
            raise CollaboratorError(f"LLM response did not validate: {exc}") from exc

    def _extract_json(self, text: str) -> Any:
        if not text:
            return None

        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

        match = re.search(r"(\{.*\})", text, flags=re.DOTALL)
        if not match:
            return None

        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError:
            return None
