import json
import logging
import re
from typing import Any

from spanlight.core.exceptions import ClassifierResponseError
from spanlight.core.metrics import increment_json_parse_failure

logger = logging.getLogger(__name__)


def _strip_markdown_fences(text: str) -> str:
    """Remove markdown code fences from LLM output."""
    patterns = [
        r"```json\s*\n?(.*?)\n?```",
        r"```\s*\n?(.*?)\n?```",
    ]
    for pattern in patterns:
        match = re.search(pattern, text, re.DOTALL | re.IGNORECASE)
        if match:
            return match.group(1).strip()
    return text


def _clean_json_text(text: str) -> str:
    """Clean common LLM JSON output issues."""
    cleaned = text.strip()
    cleaned = _strip_markdown_fences(cleaned)

    lines = cleaned.split("\n")

    start_idx = 0
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("{") or stripped.startswith("["):
            start_idx = i
            break

    end_idx = len(lines) - 1
    for i in range(len(lines) - 1, -1, -1):
        stripped = lines[i].strip()
        if stripped.endswith("}") or stripped.endswith("]"):
            end_idx = i
            break

    cleaned = "\n".join(lines[start_idx : end_idx + 1])

    cleaned = re.sub(r",\s*([}\]])", r"\1", cleaned)

    return cleaned.strip()


def _extract_balanced(text: str, opener: str, closer: str) -> str | None:
    start = text.find(opener)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False

    for i, char in enumerate(text[start:], start):
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    return None


def _extract_json_object(text: str) -> str | None:
    """Extract the outermost JSON object using bracket matching."""
    return _extract_balanced(text, "{", "}")


def _extract_json_array(text: str) -> str | None:
    """Extract the outermost JSON array using bracket matching."""
    return _extract_balanced(text, "[", "]")


def parse_json_text(text: str) -> dict | list:
    """
    Multi-tier JSON extraction: direct, cleaned, outermost object, outermost array.

    Raises:
        ClassifierResponseError: when no tier yields valid JSON
    """
    if not text or not text.strip():
        raise ClassifierResponseError("Classifier returned an empty answer")

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        increment_json_parse_failure("direct")

    try:
        return json.loads(_clean_json_text(text))
    except json.JSONDecodeError:
        increment_json_parse_failure("cleaned")

    obj_text = _extract_json_object(text)
    if obj_text:
        try:
            return json.loads(obj_text)
        except json.JSONDecodeError:
            increment_json_parse_failure("object")

    arr_text = _extract_json_array(text)
    if arr_text:
        try:
            return json.loads(arr_text)
        except json.JSONDecodeError:
            increment_json_parse_failure("array")

    logger.warning("json_parse_failed", extra={"preview": text[:300]})
    raise ClassifierResponseError("Classifier answer is not valid JSON", detail=text[:300])


def parse_span_response(data: Any) -> tuple[list[dict[str, Any]], dict[str, Any] | None]:
    """Split a decoded classifier answer into ``(spans, meta)``.

    Accepts ``{"spans": [...], "meta": {...}}`` or a bare list of spans;
    non-mapping span entries are dropped.
    """
    if isinstance(data, list):
        raw_spans, meta = data, None
    elif isinstance(data, dict):
        raw_spans = data.get("spans")
        meta = data.get("meta") if isinstance(data.get("meta"), dict) else None
        if raw_spans is None:
            raise ClassifierResponseError("Classifier answer has no 'spans' key")
    else:
        raise ClassifierResponseError("Classifier answer must be an object or a list")

    if not isinstance(raw_spans, list):
        raise ClassifierResponseError("Classifier 'spans' must be a list")
    spans = [dict(span) for span in raw_spans if isinstance(span, dict)]
    return spans, meta
