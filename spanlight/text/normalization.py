"""
Text normalization and stable hashing.

``hash_string`` is a 32-bit FNV-1a over UTF-16 code units rendered in base
36, so signatures match the ones browser clients compute for the same text.
"""

from __future__ import annotations

import json
import math
import re
import unicodedata
from collections.abc import Mapping
from functools import lru_cache

_FNV_OFFSET_BASIS = 2166136261
_FNV_PRIME = 16777619
_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
_WORD_PATTERN = re.compile(r"[\w'’-]+")

DEFAULT_CONFIDENCE = 0.7


def sanitize_text(text: object) -> str:
    """NFC-normalize ``text``; anything that is not a string becomes ``""``."""
    if not isinstance(text, str):
        return ""
    return unicodedata.normalize("NFC", text)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


@lru_cache(maxsize=1000)
def hash_string(value: str = "") -> str:
    if not value:
        return "0"
    encoded = value.encode("utf-16-le")
    hash_value = _FNV_OFFSET_BASIS
    for i in range(0, len(encoded), 2):
        hash_value ^= encoded[i] | (encoded[i + 1] << 8)
        hash_value = (hash_value * _FNV_PRIME) & 0xFFFFFFFF
    return _to_base36(hash_value)


def create_highlight_signature(text: object) -> str:
    """Signature of the text a set of highlights was computed for."""
    return hash_string(sanitize_text(text))


def _stringify(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def serialize_policy(policy: object) -> str:
    """Serialize a policy mapping with sorted keys.

    Two policies with the same entries serialize identically regardless of
    insertion order. Nested containers are JSON-encoded with sorted keys.
    """
    if not isinstance(policy, Mapping) or not policy:
        return ""
    parts: list[str] = []
    for key in sorted(policy, key=str):
        value = policy[key]
        if isinstance(value, (Mapping, list, tuple)):
            parts.append(f"{key}:{json.dumps(value, sort_keys=True, separators=(',', ':'), default=str)}")
        else:
            parts.append(f"{key}:{_stringify(value)}")
    return "|".join(parts)


def word_count(text: object) -> int:
    if not isinstance(text, str) or not text:
        return 0
    return sum(1 for match in _WORD_PATTERN.findall(text) if re.search(r"\w", match))


def clamp01(value: object) -> float:
    """Clamp a confidence into ``[0, 1]``; non-numeric input gets the default."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    if math.isnan(value):
        return DEFAULT_CONFIDENCE
    return float(min(1.0, max(0.0, value)))


def matches_at_indices(text: str, span_text: str, start: int, end: int) -> bool:
    """True when ``text[start:end]`` is exactly ``span_text``."""
    if start < 0 or start > len(text):
        return False
    return text[start:end] == span_text


def build_span_key(start: int, end: int, text: str) -> str:
    return f"{start}|{end}|{text}"
