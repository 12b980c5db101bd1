"""Recover a JSON object from a provider response body."""

import json
import logging
import math
import re
from typing import Any, Dict, Optional

from ..errors import UnparseableResponseError

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL | re.IGNORECASE)


def _finite_or_none(token: str) -> Optional[float]:
    """Non-finite numbers (``NaN``, ``Infinity``, ``1e400``) decode as null."""
    number = float(token)
    return number if math.isfinite(number) else None


def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text, parse_float=_finite_or_none, parse_constant=_finite_or_none)
    except (ValueError, TypeError):
        return None
    return value if isinstance(value, dict) else None


def extract_largest_brace_span(text: str) -> Optional[str]:
    """Span from the first ``{`` to the last ``}`` (greedy)."""
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last == -1 or first >= last:
        return None
    return text[first:last + 1]


def parse_response_text(text: Optional[str]) -> Dict[str, Any]:
    """
    Parse a response body into a JSON object.

    Tries a strict parse of the whole body, then a fenced ```json block,
    then the greedy brace span.

    Raises:
        UnparseableResponseError: If no candidate parses to a JSON object
    """
    if not text or not text.strip():
        raise UnparseableResponseError("Empty response body")

    document = _loads_object(text)
    if document is not None:
        return document

    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        document = _loads_object(fenced.group(1))
        if document is not None:
            logger.info("Recovered JSON from fenced code block")
            return document

    span = extract_largest_brace_span(text)
    if span is not None:
        document = _loads_object(span)
        if document is not None:
            logger.info(f"Recovered JSON from brace span ({len(span)} of {len(text)} chars)")
            return document

    logger.warning(
        f"Unparseable response ({len(text)} chars), tail: ...{text[-150:]!r}"
    )
    raise UnparseableResponseError(f"No recoverable JSON object in {len(text)}-char response")
