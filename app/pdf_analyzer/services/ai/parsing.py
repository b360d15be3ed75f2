"""
Lenient JSON parsing of model answers.

Models asked for JSON often wrap it in prose or markdown fences. The parser
tries the whole answer first, then the outermost `{...}` span.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

SNIPPET_NOTE = "parsed from snippet"


def _reject_constant(name: str):
    # NaN and Infinity are not JSON
    raise ValueError(f"Invalid JSON constant: {name}")


@dataclass(frozen=True)
class ParseOutcome:
    """Result of parsing a model answer as JSON."""

    ok: bool
    value: Any = None
    note: str | None = None

    @property
    def parsed_from_snippet(self) -> bool:
        return self.note == SNIPPET_NOTE


def parse_json_from_raw(raw: str) -> ParseOutcome:
    """
    Parse a model answer as JSON, recovering the first `{` to last `}` span on failure.

    Never raises.

    Args:
        raw: Free-text answer from the model.

    Returns:
        ParseOutcome with ok=True and the decoded value, or ok=False.
    """
    try:
        return ParseOutcome(ok=True, value=json.loads(raw, parse_constant=_reject_constant))
    except (TypeError, ValueError):
        pass

    if not isinstance(raw, str):
        return ParseOutcome(ok=False)

    start = raw.find("{")
    end = raw.rfind("}")
    if start >= 0 and end > start:
        try:
            value = json.loads(raw[start:end + 1], parse_constant=_reject_constant)
        except ValueError:
            logger.debug("Snippet recovery failed for answer: %s", raw[:200])
        else:
            return ParseOutcome(ok=True, value=value, note=SNIPPET_NOTE)

    return ParseOutcome(ok=False)
