"""
Router for the chat-completion passthrough.

Forwards an OpenAI chat-completion body to the configured endpoint unchanged,
except that the model defaults to the configured one and streaming is off.
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends

from ..services.ai import AIService, get_ai_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["proxy"])


@router.post("/chat/completions")
async def chat_completions(
    ai_service: Annotated[AIService, Depends(get_ai_service)],
    payload: Annotated[dict[str, Any] | None, Body()] = None,
) -> dict[str, Any]:
    """Proxy a chat completion request to the underlying endpoint."""
    return await ai_service.passthrough(payload or {})
