"""Configuration management using Pydantic for validation."""

import re
from pathlib import Path
from typing import Any, Dict, List, Literal

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MergePolicy = Literal["regex_first", "prefer_ai", "regex_only"]

EXTRACTION_FIELDS = ("title", "date", "time", "price", "venue", "signup_url")


class SelectorConfig(BaseSettings):
    """Pattern selector configuration."""

    floor_confidence: float = Field(default=0.1, ge=0.0, le=1.0)
    regex_cache_size: int = Field(default=1024, ge=1)


class VenueConfig(BaseSettings):
    """Venue resolution configuration."""

    fuzzy_threshold: float = Field(default=0.35, ge=0.0, le=1.0)
    scorer: Literal["trigram", "token_set_ratio", "wratio"] = "trigram"
    rules_file: str | None = None


class OrchestratorConfig(BaseSettings):
    """Extraction orchestration configuration."""

    needs_ai_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    review_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    heuristic_title_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    max_title_length: int = Field(default=100, ge=10)
    required_fields: List[str] = Field(default=["title", "date", "venue"])
    merge_policy: Dict[str, MergePolicy] = Field(
        default={
            "title": "prefer_ai",
            "date": "regex_first",
            "time": "regex_first",
            "price": "regex_first",
            "venue": "regex_first",
            "signup_url": "regex_only",
        }
    )
    review_unresolved_venues: bool = True
    # caption regexes by rejection kind; applied while the AI is unsure
    rejection_patterns: Dict[str, List[str]] = Field(
        default={
            "not_an_event": [
                r"happy\s+birthday(?!\s+(?:party|celebration|bash|event))",
                r"#(?:tbt|throwback)\b",
                r"thank\s+you\s+(?:to|for)\b",
                r"welcome\s+to\s+the\s+team",
            ],
            "vendor_post": [
                r"\b(?:dm|pm)\s+(?:us\s+)?(?:to|for)\s+(?:orders?|prices?|inquiries)\b",
                r"\bnow\s+accepting\s+orders\b",
                r"\b(?:shop|order)\s+now\b",
            ],
            "recurring_schedule": [
                r"\bopen\s+daily\b",
                r"\b(?:operating|opening|store)\s+hours\b",
                r"\bopen\s+(?:from\s+)?\d{1,2}(?::\d{2})?\s*[ap]\.?m\.?\s*(?:-|to)\s*\d{1,2}",
            ],
        }
    )
    rejection_ai_confidence: float = Field(default=0.85, ge=0.0, le=1.0)

    @field_validator("required_fields")
    @classmethod
    def validate_required_fields(cls, v: List[str]) -> List[str]:
        """Only known extraction fields can be required."""
        unknown = [name for name in v if name not in EXTRACTION_FIELDS]
        if unknown:
            raise ValueError(f"Unknown required fields: {unknown}")
        return v

    @field_validator("merge_policy")
    @classmethod
    def validate_merge_policy(cls, v: Dict[str, MergePolicy]) -> Dict[str, MergePolicy]:
        """Merge policy keys must name extraction fields."""
        unknown = [name for name in v if name not in EXTRACTION_FIELDS]
        if unknown:
            raise ValueError(f"Unknown merge policy fields: {unknown}")
        return v

    @field_validator("rejection_patterns")
    @classmethod
    def validate_rejection_patterns(cls, v: Dict[str, List[str]]) -> Dict[str, List[str]]:
        for kind, patterns in v.items():
            for pattern in patterns:
                try:
                    re.compile(pattern)
                except re.error as exc:
                    raise ValueError(f"Invalid rejection pattern for {kind}: {exc}") from exc
        return v


class LLMConfig(BaseSettings):
    """LLM configuration."""

    provider: Literal["openai", "anthropic"] = "openai"
    model: str = "gpt-4.1-mini"
    temperature: float = 0.1
    max_tokens: int = 1200
    timeout: int = 30
    retry_attempts: int = 2
    # SDK transport retries per attempt
    client_max_retries: int = Field(default=0, ge=0)
    base_url: str | None = None

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """Validate temperature is between 0 and 1."""
        if not 0 <= v <= 1:
            raise ValueError("Temperature must be between 0 and 1")
        return v


class AIConfig(BaseSettings):
    """External AI collaborator configuration."""

    enabled: bool = False
    llm: LLMConfig = Field(default_factory=LLMConfig)
    prompts_file: str = "config/ai_prompts.yaml"
    timeout_seconds: float = Field(default=20.0, gt=0)
    max_concurrent_calls: int = Field(default=4, ge=1)
    min_confidence: float = Field(default=0.6, ge=0.0, le=1.0)


class FeedbackConfig(BaseSettings):
    """Correction feedback configuration."""

    max_update_retries: int = Field(default=50, ge=1)
    enable_audit_trail: bool = True
    audit_path: str = "logs/corrections_audit.jsonl"


class PipelineConfig(BaseSettings):
    """Batch extraction configuration."""

    max_workers: int = Field(default=8, ge=1)
    heartbeat_seconds: float = 15.0


class StorageConfig(BaseSettings):
    """Locations of the pattern, venue and suggestion tables."""

    pattern_table_path: str = "data/patterns.json"
    venue_table_path: str = "data/known_venues.json"
    suggestion_table_path: str = "data/pattern_suggestions.json"
    seed_patterns_file: str = "config/seed_patterns.yaml"
    seed_venues_file: str = "config/known_venues.yaml"


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["json", "text"] = "text"
    file: str | None = "logs/pattern_engine.log"
    rotation: str = "10 MB"
    retention: int = 5
    enable_console: bool = True


class Config(BaseSettings):
    """Main configuration class."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    # Configuration sections
    selector: SelectorConfig = Field(default_factory=SelectorConfig)
    venue: VenueConfig = Field(default_factory=VenueConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    feedback: FeedbackConfig = Field(default_factory=FeedbackConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Environment variables
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_api_key: str = ""

    @staticmethod
    def _deep_merge_dict(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
        """Deep-merge two dicts (overrides win)."""
        merged: Dict[str, Any] = dict(base)
        for key, value in overrides.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = Config._deep_merge_dict(merged[key], value)
            else:
                merged[key] = value
        return merged

    @classmethod
    def from_yaml(cls, yaml_path: str | Path = "config/config.yaml") -> "Config":
        """Load configuration from YAML file and environment variables.

        Precedence (highest to lowest):
        1) Environment variables / .env
        2) YAML file
        3) Model defaults

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            Config instance with loaded settings

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            ValueError: If the YAML root is not a mapping
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}

        if not isinstance(yaml_config, dict):
            raise ValueError(f"YAML config root must be a mapping/dict: {yaml_path}")

        # Only values that differ from the defaults count as environment overrides.
        env_overrides = cls().model_dump(exclude_defaults=True)
        merged = cls._deep_merge_dict(yaml_config, env_overrides)

        return cls(**merged)

    def validate_config(self) -> None:
        """Validate cross-section settings.

        Raises:
            ValueError: If configuration is invalid
        """
        if self.orchestrator.review_threshold > self.orchestrator.needs_ai_threshold:
            raise ValueError(
                "orchestrator.review_threshold must not exceed orchestrator.needs_ai_threshold"
            )

        if self.ai.enabled:
            provider = self.ai.llm.provider
            if provider == "openai" and not self.openai_api_key:
                if "api.openai.com" in (self.ai.llm.base_url or self.openai_base_url or ""):
                    raise ValueError("OpenAI API key required when the AI collaborator is enabled")
            if provider == "anthropic" and not self.anthropic_api_key:
                raise ValueError("Anthropic API key required when using anthropic provider")


# Global configuration instance
_config: Config | None = None


def get_config() -> Config:
    """Get the loaded configuration instance.

    Raises:
        RuntimeError: If configuration hasn't been initialized
    """
    global _config
    if _config is None:
        raise RuntimeError("Configuration not initialized. Call load_config() first.")
    return _config


def load_config(yaml_path: str | Path = "config/config.yaml") -> Config:
    """Load and validate configuration."""
    global _config
    _config = Config.from_yaml(yaml_path)
    _config.validate_config()
    return _config


def reset_config() -> None:
    """Reset global configuration (mainly for testing)."""
    global _config
    _config = None
