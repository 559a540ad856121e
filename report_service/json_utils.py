"""
JSON recovery for free-text Gemini output.

The model's reply is treated as untrusted text. A chain of extraction
strategies is tried in order; each returns the parsed object or None, and
the first hit wins. Handles markdown code fences, surrounding prose,
literal newlines inside strings, missing and trailing commas, and output
truncated mid-generation.
"""
import json
import logging
import re
from typing import Callable, Optional

from .errors import ResponseParseError, bounded_preview

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")


def _loads_object(text: str) -> Optional[dict]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def _fenced_interior(text: str) -> Optional[str]:
    match = _FENCE.search(text)
    return match.group(1).strip() if match else None


def _brace_span(text: str) -> Optional[str]:
    """First `{` to last `}`, or to end of text when the close is missing."""
    start = text.find("{")
    if start == -1:
        return None
    end = text.rfind("}")
    if end > start:
        return text[start:end + 1]
    return text[start:]


def _repair_truncated_json(text: str) -> str:
    """Close a string, array or object left open by truncated output."""
    text = text.rstrip()
    text = re.sub(r",\s*$", "", text)

    stack = []
    in_string = False
    i = 0
    while i < len(text):
        c = text[i]
        if c == "\\" and in_string:
            i += 2
            continue
        if c == '"':
            in_string = not in_string
        elif not in_string:
            if c in ("{", "["):
                stack.append(c)
            elif c == "}" and stack and stack[-1] == "{":
                stack.pop()
            elif c == "]" and stack and stack[-1] == "[":
                stack.pop()
        i += 1

    if in_string:
        text += '"'
    for opener in reversed(stack):
        text += "]" if opener == "[" else "}"
    return text


def _fix_newlines_in_json_strings(text: str) -> str:
    """Replace literal newlines inside JSON string values with spaces."""
    result = []
    in_string = False
    i = 0
    while i < len(text):
        c = text[i]
        if c == "\\" and in_string and i + 1 < len(text):
            result.append(c)
            result.append(text[i + 1])
            i += 2
            continue
        if c == '"':
            in_string = not in_string
        result.append(" " if c == "\n" and in_string else c)
        i += 1
    return "".join(result)


def _fix_commas(text: str) -> str:
    fixed = re.sub(r'"\s*\n\s*"', '",\n"', text)
    return re.sub(r",\s*([}\]])", r"\1", fixed)


# --- Strategies: each takes the raw reply and returns a dict or None ---

def from_fenced_block(text: str) -> Optional[dict]:
    interior = _fenced_interior(text)
    return _loads_object(interior) if interior is not None else None


def from_raw_text(text: str) -> Optional[dict]:
    return _loads_object(text.strip())


def from_brace_span(text: str) -> Optional[dict]:
    span = _brace_span(_fenced_interior(text) or text)
    return _loads_object(span) if span else None


def from_repaired_span(text: str) -> Optional[dict]:
    span = _brace_span(_fenced_interior(text) or text)
    if not span:
        return None
    span = _fix_newlines_in_json_strings(span)
    result = _loads_object(span) or _loads_object(_fix_commas(span))
    if result is None:
        repaired = re.sub(r",\s*([}\]])", r"\1", _repair_truncated_json(span))
        result = _loads_object(repaired)
        if result is not None:
            logger.info("JSON successfully repaired from truncated output")
    return result


STRATEGIES: tuple[Callable[[str], Optional[dict]], ...] = (
    from_fenced_block,
    from_raw_text,
    from_brace_span,
    from_repaired_span,
)


def extract_json(text: str) -> dict:
    """
    Recover a JSON object from a model reply.

    Raises:
        ResponseParseError: no strategy produced an object. The error
            carries a bounded preview, never the full reply.
    """
    if not text or not text.strip():
        raise ResponseParseError("Model response was empty", text or "")

    for strategy in STRATEGIES:
        result = strategy(text)
        if result is not None:
            if strategy is not from_fenced_block and strategy is not from_raw_text:
                logger.info(f"JSON recovered via {strategy.__name__}")
            return result

    logger.error(f"All JSON recovery strategies failed. Preview: {bounded_preview(text)}")
    raise ResponseParseError("Failed to parse model response as JSON", text)
