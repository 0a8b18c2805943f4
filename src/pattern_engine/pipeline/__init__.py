"""Pipelines that run the engine end to end."""

from pattern_engine.pipeline.batch_extraction import BatchExtractionPipeline, PostOutcome
from pattern_engine.pipeline.engine import Engine, build_engine

__all__ = ["BatchExtractionPipeline", "Engine", "PostOutcome", "build_engine"]
