"""Tests for the batch extraction pipeline."""

from __future__ import annotations

from datetime import UTC, date, datetime
from pathlib import Path

from pattern_engine.errors import RepositoryUnavailable
from pattern_engine.extraction.models import PostInput, StructuredExtraction
from pattern_engine.extraction.orchestrator import ExtractionOrchestrator
from pattern_engine.extraction.selector import PatternSelector
from pattern_engine.normalization.venue_resolver import VenueResolver
from pattern_engine.pipeline.batch_extraction import BatchExtractionPipeline, ExtractionProgress
from pattern_engine.storage.pattern_repository import PatternRepository, load_seed_patterns
from pattern_engine.storage.venue_store import KnownVenueTable, load_seed_venues
from pattern_engine.utils.config import PipelineConfig

CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
POSTED = datetime(2024, 12, 1, tzinfo=UTC)


def _orchestrator() -> ExtractionOrchestrator:
    patterns = PatternRepository()
    patterns.seed(load_seed_patterns(CONFIG_DIR / "seed_patterns.yaml"))
    venues = KnownVenueTable()
    venues.seed(load_seed_venues(CONFIG_DIR / "known_venues.yaml"))
    return ExtractionOrchestrator(PatternSelector(patterns), VenueResolver(venues))


class _FlakyOrchestrator:
    """Fails for post ids listed in ``broken``; delegates otherwise."""

    def __init__(
        self,
        inner: ExtractionOrchestrator,
        broken: set[str],
        error: Exception | None = None,
    ) -> None:
        self.inner = inner
        self.broken = broken
        self.error = error or RepositoryUnavailable("pattern table offline", store="patterns")

    def extract(self, post: PostInput) -> StructuredExtraction:
        if post.post_id in self.broken:
            raise self.error
        return self.inner.extract(post)


def _posts(count: int) -> list[PostInput]:
    return [
        PostInput(
            post_id=f"post-{i}",
            caption_text=f"Gig night {i}\nDec {i + 1}, 2024 9PM\n📍 Nokal",
            post_timestamp=POSTED,
        )
        for i in range(count)
    ]


def test_outcomes_keep_input_order() -> None:
    pipeline = BatchExtractionPipeline(_orchestrator(), PipelineConfig(max_workers=4))

    outcomes = pipeline.run(_posts(12))

    assert [o.post_id for o in outcomes] == [f"post-{i}" for i in range(12)]
    assert all(o.ok for o in outcomes)
    assert [o.extraction.event_date for o in outcomes] == [date(2024, 12, i + 1) for i in range(12)]


def test_failed_posts_are_reported_not_dropped() -> None:
    pipeline = BatchExtractionPipeline(
        _FlakyOrchestrator(_orchestrator(), {"post-2"}), PipelineConfig(max_workers=3)
    )

    outcomes = pipeline.run(_posts(5))

    failed = [o for o in outcomes if not o.ok]
    assert len(outcomes) == 5
    assert [o.post_id for o in failed] == ["post-2"]
    assert failed[0].retryable is True
    assert "RepositoryUnavailable" in failed[0].error
    assert pipeline.last_stats.failed == 1
    assert pipeline.last_stats.succeeded == 4
    assert pipeline.last_stats.failures == ["post-2"]


def test_unexpected_error_is_a_non_retryable_failure() -> None:
    pipeline = BatchExtractionPipeline(
        _FlakyOrchestrator(_orchestrator(), {"post-1"}, KeyError("venue")),
        PipelineConfig(max_workers=2),
    )

    outcomes = pipeline.run(_posts(3))

    assert [o.ok for o in outcomes] == [True, False, True]
    assert outcomes[1].retryable is False
    assert outcomes[1].error.startswith("KeyError")
    assert pipeline.last_stats.failures == ["post-1"]


def test_empty_batch() -> None:
    pipeline = BatchExtractionPipeline(_orchestrator())

    assert pipeline.run([]) == []
    assert pipeline.last_stats.total == 0


def test_parallel_results_match_sequential() -> None:
    posts = _posts(8)
    sequential = BatchExtractionPipeline(_orchestrator(), PipelineConfig(max_workers=1)).run(posts)
    parallel = BatchExtractionPipeline(_orchestrator(), PipelineConfig(max_workers=8)).run(posts)

    def strip(outcome):
        return outcome.extraction.model_dump(exclude={"venue_id"})

    assert [strip(o) for o in sequential] == [strip(o) for o in parallel]


def test_progress_counts_and_formats_eta() -> None:
    progress = ExtractionProgress(total_posts=2, heartbeat_seconds=0.0)

    progress.update()
    progress.update()
    progress.update()

    assert progress.done == 2
    assert progress._format_eta(float("inf")) == "unknown"
    assert progress._format_eta(3725) == "1h02m"
    assert progress._format_eta(65) == "1m05s"
