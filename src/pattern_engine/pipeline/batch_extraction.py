"""Batch extraction over a worker pool."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from pattern_engine.errors import PatternEngineError
from pattern_engine.extraction.models import PostInput, StructuredExtraction
from pattern_engine.extraction.orchestrator import ExtractionOrchestrator
from pattern_engine.utils.config import PipelineConfig


class PostOutcome(BaseModel):
    """Result for one post; exactly one of ``extraction`` / ``error`` is set."""

    post_id: str
    extraction: Optional[StructuredExtraction] = None
    error: Optional[str] = None
    retryable: bool = False

    @property
    def ok(self) -> bool:
        return self.extraction is not None


class BatchStats(BaseModel):
    """Aggregate counts for one batch run."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    needs_review: int = 0
    elapsed_seconds: float = 0.0
    failures: List[str] = Field(default_factory=list)


class ExtractionProgress:
    """Lightweight progress tracker with heartbeat logging."""

    def __init__(self, total_posts: int, heartbeat_seconds: float = 15.0) -> None:
        self.total_posts = max(0, total_posts)
        self.heartbeat_seconds = heartbeat_seconds
        self.done = 0
        self._start = time.time()
        self._last_log = 0.0
        self._lock = threading.Lock()

    def update(self, *, increment: int = 1) -> None:
        with self._lock:
            self.done = min(self.done + increment, self.total_posts)
            now = time.time()
            elapsed = max(now - self._start, 1e-6)
            rate = self.done / elapsed
            remaining = max(self.total_posts - self.done, 0)
            eta_seconds = remaining / rate if rate > 0 else float("inf")

            should_log = (
                self.done == self.total_posts
                or self._last_log == 0
                or (now - self._last_log) >= self.heartbeat_seconds
            )
            if should_log:
                percent = (self.done / max(self.total_posts, 1)) * 100
                logger.info(
                    "Extraction: {}/{} ({:.0f}%), {:.2f} posts/s, ETA {}",
                    self.done,
                    self.total_posts,
                    percent,
                    rate,
                    self._format_eta(eta_seconds),
                )
                self._last_log = now

    def _format_eta(self, seconds: float) -> str:
        if seconds == float("inf"):
            return "unknown"
        minutes, secs = divmod(int(seconds), 60)
        hours, minutes = divmod(minutes, 60)
        if hours:
            return f"{hours}h{minutes:02d}m"
        if minutes:
            return f"{minutes}m{secs:02d}s"
        return f"{secs}s"


class BatchExtractionPipeline:
    """Run the orchestrator over many posts concurrently.

    Output order matches input order. A post whose extraction raises is
    reported as a failed ``PostOutcome`` instead of being dropped.
    """

    def __init__(
        self,
        orchestrator: ExtractionOrchestrator,
        config: PipelineConfig | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.config = config or PipelineConfig()
        self.last_stats = BatchStats()

    def run(self, posts: Iterable[PostInput]) -> List[PostOutcome]:
        batch = list(posts)
        progress = ExtractionProgress(len(batch), self.config.heartbeat_seconds)
        started = time.time()

        def work(post: PostInput) -> PostOutcome:
            try:
                return PostOutcome(post_id=post.post_id, extraction=self.orchestrator.extract(post))
            except PatternEngineError as exc:
                logger.error("Extraction failed", post_id=post.post_id, error=str(exc))
                return PostOutcome(
                    post_id=post.post_id,
                    error=f"{type(exc).__name__}: {exc}",
                    retryable=bool(getattr(exc, "retryable", False)),
                )
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unexpected extraction error", post_id=post.post_id)
                return PostOutcome(
                    post_id=post.post_id,
                    error=f"{type(exc).__name__}: {exc}",
                    retryable=False,
                )
            finally:
                progress.update()

        if not batch:
            outcomes: List[PostOutcome] = []
        else:
            workers = max(1, min(self.config.max_workers, len(batch)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="extract") as executor:
                outcomes = list(executor.map(work, batch))

        self.last_stats = self._stats(outcomes, time.time() - started)
        logger.info(
            "Batch extraction finished",
            total=self.last_stats.total,
            succeeded=self.last_stats.succeeded,
            failed=self.last_stats.failed,
            needs_review=self.last_stats.needs_review,
        )
        return outcomes

    @staticmethod
    def _stats(outcomes: List[PostOutcome], elapsed: float) -> BatchStats:
        succeeded = [o for o in outcomes if o.ok]
        return BatchStats(
            total=len(outcomes),
            succeeded=len(succeeded),
            failed=len(outcomes) - len(succeeded),
            needs_review=sum(1 for o in succeeded if o.extraction and o.extraction.needs_review),
            elapsed_seconds=elapsed,
            failures=[o.post_id for o in outcomes if not o.ok],
        )
