"""Client factories for the AI collaborator.

Transport settings come from ``AIConfig``. The SDK request timeout never
exceeds the collaborator deadline the orchestrator waits for, and SDK-level
retries are ``llm.client_max_retries`` (the extractor runs its own retry loop
with backoff on top of that).
"""

import os
from typing import Any, Dict, Optional

from loguru import logger
from openai import OpenAI

from pattern_engine.utils.config import AIConfig


def _mask(secret: Optional[str]) -> str:
    if secret and len(secret) > 8:
        return f"{secret[:4]}...{secret[-4:]}"
    return "None"


def client_transport(ai: AIConfig) -> Dict[str, Any]:
    """Timeout and retry keyword arguments shared by both SDK clients."""
    return {
        "timeout": min(float(ai.llm.timeout), ai.timeout_seconds),
        "max_retries": ai.llm.client_max_retries,
    }


def create_openai_client(
    ai: Optional[AIConfig] = None,
    *,
    api_key: Optional[str] = None,
    **kwargs: Any,
) -> OpenAI:
    """Create an OpenAI client for the collaborator.

    Args:
        ai: Collaborator settings; ``llm.base_url``, ``llm.timeout``,
            ``timeout_seconds`` and ``llm.client_max_retries`` are used.
        api_key: The API key. Falls back to ``OPENAI_API_KEY``.
        **kwargs: Additional arguments to pass to the OpenAI constructor.
    """
    ai = ai or AIConfig()
    final_api_key = api_key or os.getenv("OPENAI_API_KEY")
    final_base_url = ai.llm.base_url or os.getenv("OPENAI_BASE_URL")
    transport = client_transport(ai)

    logger.debug(
        f"Creating OpenAI client: base_url={final_base_url}, "
        f"api_key={_mask(final_api_key)}, timeout={transport['timeout']}, "
        f"max_retries={transport['max_retries']}"
    )

    return OpenAI(api_key=final_api_key, base_url=final_base_url, **transport, **kwargs)


def create_anthropic_client(ai: Optional[AIConfig] = None, *, api_key: Optional[str] = None) -> Any:
    """Create an Anthropic client (imported lazily; only needed for that provider)."""
    import anthropic

    ai = ai or AIConfig()
    final_api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
    client_kwargs = client_transport(ai)
    if final_api_key:
        client_kwargs["api_key"] = final_api_key
    if ai.llm.base_url:
        client_kwargs["base_url"] = ai.llm.base_url

    logger.debug(
        f"Creating Anthropic client: base_url={ai.llm.base_url}, "
        f"api_key={_mask(final_api_key)}, timeout={client_kwargs['timeout']}"
    )
    return anthropic.Anthropic(**client_kwargs)
