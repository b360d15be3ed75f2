"""
Chat-completion calls against an OpenAI-compatible endpoint.

Builds the per-page and aggregation message sets and sends them with an
optional JSON-schema response format, retrying without it when the endpoint
doesn't support structured output.
"""

import base64
import io
import json
import logging
from pathlib import Path
from typing import Any

from PIL import Image

from .exceptions import CompletionFailed

logger = logging.getLogger(__name__)


# =============================================================================
# Prompts
# =============================================================================

PAGE_SYSTEM_PROMPT = "You are a helpful assistant that analyzes PDFs rendered as images."

AGGREGATION_SYSTEM_PROMPT = "You are a helpful assistant that combines results from multiple pages."

STRICT_JSON_PROMPT = "Respond ONLY with valid JSON strictly conforming to the provided schema."

DEFAULT_PAGE_PROMPT = "Analyze the content of the provided PDF."

DEFAULT_FINAL_PROMPT = (
    "Combine the results extracted from each page into a single final JSON, "
    "keeping it consistent and removing duplicates. Respond ONLY with valid JSON."
)

PAGE_RESULTS_MARKER = "Per-page results (JSON):"

SCHEMA_NAME = "custom_schema"

# Substrings that identify an endpoint rejecting response_format
SCHEMA_ERROR_KEYWORDS = ("response_format", "json_schema", "unsupported", "must be")


# =============================================================================
# Message Building
# =============================================================================


def _guess_mime_type(path: Path) -> str:
    if path.suffix.lower() in (".jpg", ".jpeg"):
        return "image/jpeg"
    return "image/png"


def image_to_data_url(image_path: Path | str, max_side: int = 0) -> str:
    """
    Encode an image file as a base64 data URI.

    Args:
        image_path: Rendered page image.
        max_side: If positive, downscale so the longest side is at most this many pixels.

    Returns:
        A `data:<mime>;base64,...` URL.
    """
    path = Path(image_path)
    mime = _guess_mime_type(path)
    data = path.read_bytes()

    if max_side > 0:
        with Image.open(io.BytesIO(data)) as image:
            if max(image.size) > max_side:
                ratio = max_side / max(image.size)
                new_size = (int(image.size[0] * ratio), int(image.size[1] * ratio))
                buffer = io.BytesIO()
                image.resize(new_size, Image.Resampling.LANCZOS).save(
                    buffer, format="PNG", optimize=True
                )
                data = buffer.getvalue()
                mime = "image/png"

    encoded = base64.b64encode(data).decode("utf-8")
    return f"data:{mime};base64,{encoded}"


def build_page_messages(
    prompt: str,
    image_paths: list[Path],
    strict_json: bool = False,
    max_image_side: int = 0,
) -> list[dict[str, Any]]:
    """Build the messages asking the model to analyze rendered page images."""
    guidance = prompt.strip() if prompt and prompt.strip() else DEFAULT_PAGE_PROMPT
    content: list[dict[str, Any]] = [{"type": "text", "text": guidance}]
    for image_path in image_paths:
        content.append({
            "type": "image_url",
            "image_url": {"url": image_to_data_url(image_path, max_image_side)},
        })

    messages: list[dict[str, Any]] = [
        {"role": "system", "content": PAGE_SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]
    if strict_json:
        messages.insert(0, {"role": "system", "content": STRICT_JSON_PROMPT})
    return messages


def build_aggregation_messages(
    final_prompt: str,
    page_payload: list[Any],
    strict_json: bool = False,
) -> list[dict[str, Any]]:
    """Build the messages asking the model to merge all per-page results."""
    content = [
        {"type": "text", "text": final_prompt},
        {"type": "text", "text": PAGE_RESULTS_MARKER},
        {"type": "text", "text": json.dumps(page_payload, ensure_ascii=False)},
    ]
    messages: list[dict[str, Any]] = [
        {"role": "system", "content": AGGREGATION_SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]
    if strict_json:
        messages.insert(0, {"role": "system", "content": STRICT_JSON_PROMPT})
    return messages


# =============================================================================
# Completion Calls
# =============================================================================


def _error_text(error: Exception) -> str:
    body = getattr(error, "body", None)
    if body is not None and not isinstance(body, str):
        try:
            body = json.dumps(body)
        except (TypeError, ValueError):
            body = str(body)
    return f"{body or ''} {error}"


def is_schema_rejection(error: Exception) -> bool:
    """Return True if the endpoint error looks like it rejected response_format."""
    text = _error_text(error)
    return any(keyword in text for keyword in SCHEMA_ERROR_KEYWORDS)


def _content_of(response: Any) -> str:
    try:
        return response.choices[0].message.content or ""
    except (AttributeError, IndexError, TypeError):
        return ""


async def complete(
    messages: list[dict[str, Any]],
    client: Any,  # AsyncOpenAI client
    model: str,
    schema: dict[str, Any] | None = None,
) -> str:
    """
    Send a chat completion and return the answer text.

    With a schema, structured output is requested first. If the endpoint
    rejects it, the same messages are sent again without a response format.

    Args:
        messages: Role-tagged chat messages.
        client: AsyncOpenAI client instance.
        model: Model name to use.
        schema: Optional JSON schema to constrain the answer.

    Returns:
        The answer text ("" if the model returned no content).

    Raises:
        CompletionFailed: If the endpoint call fails for any other reason.
    """
    request: dict[str, Any] = {"model": model, "messages": messages, "temperature": 0}

    if schema is not None:
        try:
            response = await client.chat.completions.create(
                **request,
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": SCHEMA_NAME, "schema": schema},
                },
            )
            return _content_of(response)
        except Exception as e:
            if not is_schema_rejection(e):
                logger.error("Completion request failed: %s", e)
                raise CompletionFailed(f"Completion request failed: {e}") from e
            logger.info("Endpoint rejected response_format, retrying without schema: %s", e)

    try:
        response = await client.chat.completions.create(**request)
    except Exception as e:
        logger.error("Completion request failed: %s", e)
        raise CompletionFailed(f"Completion request failed: {e}") from e
    return _content_of(response)


async def passthrough(payload: dict[str, Any], client: Any, model: str) -> dict[str, Any]:
    """
    Forward a raw chat-completion request body to the endpoint.

    The model defaults to the configured one and streaming is always off.

    Raises:
        CompletionFailed: If the endpoint call fails.
    """
    request = {**payload, "model": payload.get("model") or model, "stream": False}
    try:
        completion = await client.chat.completions.create(**request)
    except Exception as e:
        logger.error("Proxy request failed: %s", e)
        raise CompletionFailed(str(e) or "Proxy request failed.") from e
    return completion.model_dump(exclude_unset=True)
