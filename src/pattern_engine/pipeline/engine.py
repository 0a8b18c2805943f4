"""Wire stores, extraction and curation services from one Config."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from loguru import logger

from pattern_engine.curation.feedback import (
    ConfidenceUpdater,
    CorrectionAuditTrail,
    CorrectionService,
)
from pattern_engine.curation.pattern_promotion import (
    PatternPromotionService,
    PatternSuggestionTable,
)
from pattern_engine.curation.venue_learning import VenueLearningService
from pattern_engine.extraction.ai_collaborator import AICollaborator, LLMEventExtractor
from pattern_engine.extraction.normalizers import FieldNormalizer
from pattern_engine.extraction.orchestrator import ExtractionOrchestrator
from pattern_engine.extraction.selector import PatternSelector
from pattern_engine.normalization.venue_resolver import VenueResolver
from pattern_engine.pipeline.batch_extraction import BatchExtractionPipeline
from pattern_engine.storage.pattern_repository import PatternRepository, load_seed_patterns
from pattern_engine.storage.venue_store import KnownVenueTable, load_seed_venues
from pattern_engine.utils.config import Config


@dataclass
class Engine:
    """Everything the CLI and batch jobs need, built once per process."""

    config: Config
    patterns: PatternRepository
    venues: KnownVenueTable
    suggestions: PatternSuggestionTable
    selector: PatternSelector
    resolver: VenueResolver
    orchestrator: ExtractionOrchestrator
    updater: ConfidenceUpdater
    corrections: CorrectionService
    promotion: PatternPromotionService
    venue_learning: VenueLearningService

    def pipeline(self) -> BatchExtractionPipeline:
        return BatchExtractionPipeline(self.orchestrator, self.config.pipeline)

    def close(self) -> None:
        self.orchestrator.close()


def build_engine(
    config: Config,
    *,
    collaborator: Optional[AICollaborator] = None,
    seed: bool = True,
) -> Engine:
    """Build the engine; empty stores are seeded from the YAML banks when ``seed``."""
    storage = config.storage
    patterns = PatternRepository(table_path=storage.pattern_table_path)
    venues = KnownVenueTable(table_path=storage.venue_table_path)
    suggestions = PatternSuggestionTable(table_path=storage.suggestion_table_path)

    if seed:
        seed_stores(config, patterns, venues)

    if collaborator is None and config.ai.enabled:
        collaborator = LLMEventExtractor(config.ai, api_key=_api_key(config))

    selector = PatternSelector(patterns, FieldNormalizer(), config.selector)
    resolver = VenueResolver(venues, config.venue)
    orchestrator = ExtractionOrchestrator(
        selector,
        resolver,
        collaborator,
        config=config.orchestrator,
        ai_config=config.ai,
    )

    audit = CorrectionAuditTrail(
        Path(config.feedback.audit_path), enabled=config.feedback.enable_audit_trail
    )
    updater = ConfidenceUpdater(patterns, config.feedback)
    return Engine(
        config=config,
        patterns=patterns,
        venues=venues,
        suggestions=suggestions,
        selector=selector,
        resolver=resolver,
        orchestrator=orchestrator,
        updater=updater,
        corrections=CorrectionService(updater, audit=audit, config=config.feedback),
        promotion=PatternPromotionService(patterns, suggestions, audit=audit),
        venue_learning=VenueLearningService(venues, audit=audit),
    )


def seed_stores(config: Config, patterns: PatternRepository, venues: KnownVenueTable) -> tuple[int, int]:
    """Seed empty stores from the configured YAML files; returns (patterns, venues) added."""
    added_patterns = added_venues = 0
    pattern_file = Path(config.storage.seed_patterns_file)
    venue_file = Path(config.storage.seed_venues_file)

    if len(patterns) == 0 and pattern_file.exists():
        added_patterns = patterns.seed(load_seed_patterns(pattern_file))
    if len(venues) == 0 and venue_file.exists():
        added_venues = venues.seed(load_seed_venues(venue_file))

    if added_patterns or added_venues:
        logger.info("Seeded stores", patterns=added_patterns, venues=added_venues)
    return added_patterns, added_venues


def _api_key(config: Config) -> Optional[str]:
    if config.ai.llm.provider == "anthropic":
        return config.anthropic_api_key or None
    return config.openai_api_key or None
