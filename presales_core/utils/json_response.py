"""Parsing helpers for JSON returned by chat-inference calls.

Models are told to return bare JSON, yet they regularly wrap it in
markdown fences or put a sentence in front of it.  :func:`parse_json_object`
strips both and insists on a top-level object.
"""

from __future__ import annotations

import json
import re
from typing import Any

from presales_core.utils.errors import ContentParseFailure

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)


def parse_json_object(
    response: str,
    stage: str | None = None,
    provider_name: str | None = None,
) -> dict[str, Any]:
    """Extract a JSON object from a raw model response.

    Parameters
    ----------
    response:
        Raw response text.
    stage:
        Pipeline stage name attached to any raised error.
    provider_name:
        Provider attached to any raised error.

    Returns
    -------
    dict
        The parsed top-level JSON object.

    Raises
    ------
    ContentParseFailure
        If the response is empty, contains no JSON object, is not valid
        JSON, or its top level is not an object.
    """
    if not response or not response.strip():
        raise ContentParseFailure(
            message="Empty response", provider_name=provider_name, stage=stage
        )

    text = response.strip()

    fence_match = _JSON_FENCE_RE.search(text)
    if fence_match:
        text = fence_match.group(1).strip()

    if not text.startswith("{"):
        brace_start = text.find("{")
        brace_end = text.rfind("}")
        if brace_start == -1 or brace_end <= brace_start:
            raise ContentParseFailure(
                message="Response contains no JSON object",
                provider_name=provider_name,
                stage=stage,
            )
        text = text[brace_start : brace_end + 1]

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ContentParseFailure(
            message=f"Response is not valid JSON: {exc.msg} at position {exc.pos}",
            provider_name=provider_name,
            stage=stage,
        ) from exc

    if not isinstance(parsed, dict):
        raise ContentParseFailure(
            message=f"Expected a JSON object, got {type(parsed).__name__}",
            provider_name=provider_name,
            stage=stage,
        )
    return parsed
