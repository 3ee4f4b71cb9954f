"""Defensive extraction of JSON from oracle responses.

Oracle output is untrusted: it may be wrapped in prose or markdown
fences, truncated, or not JSON at all. Parsing has exactly two
outcomes, a ParsedResponse carrying the first well-formed JSON object,
or a ParseFailure carrying the raw text.
"""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import BaseModel, Field

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


class ParsedResponse(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)


class ParseFailure(BaseModel):
    raw_text: str = ""
    reason: str = ""


def parse_oracle_json(text: str | None) -> ParsedResponse | ParseFailure:
    """Return the first well-formed JSON object in ``text``."""
    if not text or not text.strip():
        return ParseFailure(raw_text=text or "", reason="empty response")

    candidates = []
    fence = _FENCE.search(text)
    if fence:
        candidates.append(fence.group(1))
    candidates.append(text)

    for candidate in candidates:
        data = _first_object(candidate)
        if data is not None:
            return ParsedResponse(data=data)

    return ParseFailure(raw_text=text, reason="no JSON object found")


def _first_object(text: str) -> dict[str, Any] | None:
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start >= 0:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None
