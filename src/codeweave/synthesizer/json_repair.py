"""
Parsing of JSON answers from the LLM.

Models wrap JSON in prose or code fences and cut long answers off mid-object.
``parse_ai_json`` tries, in order: a direct parse, the first fenced block,
the first embedded object/array, a repair of truncated JSON, and finally one
fresh request after a short delay.
"""

import json
import logging
import re
import time
from typing import Any, Callable

from codeweave.errors import SynthesisError
from codeweave.synthesizer.llm_client import LLMError

logger = logging.getLogger(__name__)

FENCED_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
EMBEDDED_JSON_RE = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")
JSON_START_RE = re.compile(r"(\{[\s\S]*|\[[\s\S]*)")
TRAILING_COMMA_RE = re.compile(r",\s*$")


def _loads(text: str) -> Any | None:
    try:
        return json.loads(text)
    except ValueError:
        return None


def try_parse_json(response: str) -> Any | None:
    """Parse ``response`` directly, from a fenced block, or from an embedded object."""
    parsed = _loads(response)
    if parsed is not None:
        return parsed

    match = FENCED_BLOCK_RE.search(response)
    if match:
        parsed = _loads(match.group(1).strip())
        if parsed is not None:
            return parsed

    match = EMBEDDED_JSON_RE.search(response)
    if match:
        return _loads(match.group(1))
    return None


def repair_truncated_json(response: str) -> Any | None:
    """
    Close an answer that was cut off mid-JSON.

    Closes an open string, drops a dangling comma and closes every open
    bracket and brace in nesting order.

    Returns:
        The parsed value, or None when the repaired text still does not parse
    """
    match = JSON_START_RE.search(response)
    text = match.group(1) if match else response

    closers: list[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            closers.append("}")
        elif char == "[":
            closers.append("]")
        elif char in "}]" and closers:
            closers.pop()

    if in_string:
        text += '"'
    text = TRAILING_COMMA_RE.sub("", text)
    text += "".join(reversed(closers))
    return _loads(text)


def parse_ai_json(
    request: Callable[[], str],
    label: str,
    retry_delay: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """
    Request an answer and parse it as JSON, retrying once.

    Args:
        request: Zero-argument callable returning the raw LLM answer
        label: Name of the synthesis call, used in messages
        retry_delay: Seconds to wait before the second request
        sleep: Sleep function

    Returns:
        The parsed JSON value

    Raises:
        SynthesisError: If the request fails or neither answer parses
    """
    for attempt in (1, 2):
        try:
            response = request()
        except LLMError as e:
            raise SynthesisError(f"{label} request failed: {e}", operation=label) from e

        parsed = try_parse_json(response)
        if parsed is None:
            parsed = repair_truncated_json(response)
        if parsed is not None:
            return parsed

        if attempt == 1:
            logger.warning(f"{label}: response failed to parse, retrying in {retry_delay}s")
            sleep(retry_delay)

    raise SynthesisError(f"Failed to parse {label} JSON from AI response", operation=label)
