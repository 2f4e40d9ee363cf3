"""LLM client factory."""

from typing import TYPE_CHECKING, Optional

import httpx

from .base import BaseLLMClient
from .gemini import GeminiLLMClient

if TYPE_CHECKING:
    from kardia_engine.config.models import GeminiConfig


def create_llm_client(
    config: "GeminiConfig",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseLLMClient:
    """
    Factory function to create the configured model client.

    Args:
        config: Model configuration
        transport: Optional httpx transport override

    Returns:
        Provider-specific client instance

    Raises:
        ValueError: If provider is unknown
    """
    provider = config.provider.lower()

    if provider == "gemini":
        return GeminiLLMClient(
            base_url=config.base_url,
            model=config.model,
            api_key=config.api_key,
            timeout=config.timeout_seconds,
            temperature=config.temperature,
            max_output_tokens=config.max_output_tokens,
            response_mime_type=config.response_mime_type,
            retry_count=config.retry_count,
            retry_backoff_seconds=config.retry_backoff_seconds,
            verify=config.verify_ssl,
            transport=transport,
        )

    raise ValueError(
        f"Unknown LLM provider: '{provider}'. "
        f"Supported providers: gemini"
    )
