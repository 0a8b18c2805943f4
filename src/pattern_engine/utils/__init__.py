"""Utility modules: configuration, logging, LLM clients."""
