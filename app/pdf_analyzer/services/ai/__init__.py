"""
AI service package for multimodal chat completions.

This package provides modular AI functionality split into:
- completion: message building and chat-completion calls with schema fallback
- parsing: lenient JSON parsing of model answers

The AIService class binds these functions to one configured client.
"""

import logging
from pathlib import Path
from typing import Any

from .completion import (
    DEFAULT_FINAL_PROMPT,
    PAGE_RESULTS_MARKER,
    build_aggregation_messages,
    build_page_messages,
    complete as _complete,
    image_to_data_url,
    is_schema_rejection,
    passthrough as _passthrough,
)
from .exceptions import AggregationUnparsable, AIServiceError, CompletionFailed
from .parsing import ParseOutcome, parse_json_from_raw

logger = logging.getLogger(__name__)

# Export public functions and classes
__all__ = [
    "AIService",
    "AIServiceError",
    "AggregationUnparsable",
    "CompletionFailed",
    "DEFAULT_FINAL_PROMPT",
    "PAGE_RESULTS_MARKER",
    "ParseOutcome",
    "build_aggregation_messages",
    "build_page_messages",
    "get_ai_service",
    "image_to_data_url",
    "is_schema_rejection",
    "parse_json_from_raw",
]


class AIService:
    """
    Gateway to an OpenAI-compatible chat-completion endpoint.

    Used for per-page extraction from rendered page images and for the
    final aggregation of all page results.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_image_side: int | None = None,
        client: Any = None,
    ):
        """
        Initialize the AI service.

        Args:
            api_key: API key. If None, reads from config/environment.
            base_url: Endpoint base URL. If None, reads from config/environment.
            model: Model to use (must support vision).
            timeout: Per-request timeout in seconds.
            max_image_side: Downscale page images above this size (0 = off).
            client: Pre-built client, mainly for tests.
        """
        if None in (api_key, base_url, model, timeout, max_image_side):
            from ...config import get_settings

            settings = get_settings()
            api_key = settings.openai_api_key if api_key is None else api_key
            base_url = settings.openai_base_url if base_url is None else base_url
            model = settings.model if model is None else model
            timeout = settings.completion_timeout if timeout is None else timeout
            max_image_side = settings.max_image_side if max_image_side is None else max_image_side

        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.timeout = timeout or None
        self.max_image_side = max_image_side
        self._client = client

    @property
    def client(self):
        """Lazy-load the AsyncOpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def complete(
        self,
        messages: list[dict[str, Any]],
        schema: dict[str, Any] | None = None,
    ) -> str:
        """
        Run one chat completion at temperature 0.

        Delegates to the completion module.

        Args:
            messages: Role-tagged chat messages.
            schema: Optional JSON schema for structured output.

        Returns:
            The answer text.
        """
        return await _complete(messages, client=self.client, model=self.model, schema=schema)

    async def analyze_page(
        self,
        prompt: str,
        image_path: Path,
        schema: dict[str, Any] | None = None,
    ) -> str:
        """Ask the model about a single rendered page."""
        messages = build_page_messages(
            prompt,
            [image_path],
            strict_json=schema is not None,
            max_image_side=self.max_image_side,
        )
        return await self.complete(messages, schema)

    async def aggregate(
        self,
        final_prompt: str,
        page_payload: list[Any],
        schema: dict[str, Any] | None = None,
    ) -> str:
        """Ask the model to merge the ordered per-page results."""
        messages = build_aggregation_messages(
            final_prompt, page_payload, strict_json=schema is not None
        )
        return await self.complete(messages, schema)

    async def passthrough(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Forward a raw chat-completion body to the endpoint."""
        return await _passthrough(payload, client=self.client, model=self.model)


# =============================================================================
# Singleton Factory
# =============================================================================

_ai_service: AIService | None = None


def get_ai_service() -> AIService:
    """Get or create the AI service singleton."""
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService()
    return _ai_service
