"""Shared helpers for the interpretation gateway.

Pure functions only: input sanitization, parsing of provider output, cache key
construction and latency formatting. Nothing here raises on bad provider text.
"""

import hashlib
import json
import logging
import re
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from silkspark.ai.constants import CACHE_PREFIX, DEFAULT_MAX_INPUT_LENGTH, FILTERED_MARKER
from silkspark.ai.models import StructuredFields

log = logging.getLogger("silkspark.ai.utils")

_CONTROL_CHARS = re.compile(r"[\u0000-\u001F\u007F]")

_INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(all\s+)?(previous\s+)?instructions?", re.IGNORECASE),
    re.compile(r"you\s+are\s+(now\s+)?a", re.IGNORECASE),
    re.compile(r"system\s*:", re.IGNORECASE),
    re.compile(r"assistant\s*:", re.IGNORECASE),
    re.compile(r"忽略(之前|前面)?(的)?(所有)?(指令|说明|提示)"),
    re.compile(r"忘记(之前|前面)?(的)?(所有)?(指令|说明|提示)"),
    re.compile(r"无视(之前|前面)?(的)?(所有)?(指令|说明|提示)"),
    re.compile(r"你(现在)?是(一个)?"),
    re.compile(r"系统(提示|指令)\s*[:：]"),
    re.compile(r"越狱(模式)?"),
    re.compile(r"扮演(一个)?"),
    re.compile(r"【系统】|【助手】|\[系统\]|\[助手\]"),
]

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_BRACED_SPAN = re.compile(r"\{[\s\S]*\}")

BIRTH_CHART_SECTIONS = {
    "sun_traits": "Core Essence",
    "moon_emotions": "Emotional",
    "element_advice": "Balance",
}


def sanitize_input(text: Optional[str], max_length: int = DEFAULT_MAX_INPUT_LENGTH) -> str:
    """Neutralize prompt-injection phrases in user text.

    Control characters are stripped, instruction-override phrases replaced by
    an inert marker, and the result truncated to ``max_length``.
    """
    if not text or not isinstance(text, str):
        return ""
    cleaned = _CONTROL_CHARS.sub("", text)
    for pattern in _INJECTION_PATTERNS:
        cleaned = pattern.sub(FILTERED_MARKER, cleaned)
    return cleaned[:max_length].strip()


def extract_section(text: str, keyword: str) -> Optional[str]:
    """Pull the body following a markdown header like ``**Keyword**:``."""
    if not text:
        return None
    match = re.search(rf"\*\*{re.escape(keyword)}[^*]*\*\*[:\s]*([^*]+)", text, re.IGNORECASE)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return None


def format_latency(ms: Union[int, float]) -> str:
    if ms >= 1000:
        return f"{ms / 1000:.1f}s"
    return f"{int(ms)}ms"


def digest(text: str, length: int = 16) -> str:
    """Short stable fingerprint for long free text inside cache keys."""
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()[:length]


def _key_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def generate_cache_key(kind: str, user_id: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Content-addressed key: same kind, user and params give the same key in any order."""
    param_str = "_".join(f"{k}={_key_value(v)}" for k, v in sorted((params or {}).items()))
    key = f"{CACHE_PREFIX}ai_{kind}_{user_id}"
    return f"{key}_{param_str}" if param_str else key


def parse_json_from_text(text: Optional[str]) -> Optional[Any]:
    """Best-effort JSON extraction from model output.

    Tries, in order: the whole text, a fenced code block, the outermost
    ``{...}`` span. Returns None when all three fail.
    """
    if not text or not isinstance(text, str):
        return None

    try:
        return json.loads(text)
    except ValueError:
        pass

    block = _FENCED_BLOCK.search(text)
    if block and block.group(1):
        try:
            return json.loads(block.group(1).strip())
        except ValueError:
            pass

    span = _BRACED_SPAN.search(text)
    if span:
        try:
            return json.loads(span.group(0))
        except ValueError:
            pass

    return None


def _has_content(fields: StructuredFields) -> bool:
    return any(
        getattr(fields, name) not in (None, "", [], {})
        for name in ("core_message", "interpretation", "action_advice", "lucky_elements")
    )


def _lenient_fields(data: Mapping[str, Any], kind: str) -> StructuredFields:
    """Validate each structured field on its own; a malformed one is dropped alone."""
    values: Dict[str, Any] = {}
    for name, field in StructuredFields.model_fields.items():
        alias = field.alias or name
        if alias in data:
            raw = data[alias]
        elif name in data:
            raw = data[name]
        else:
            continue
        try:
            values[name] = getattr(StructuredFields.model_validate({alias: raw}), name)
        except ValidationError as e:
            log.info("dropping malformed %s in %s response: %s", alias, kind, e.error_count())
    return StructuredFields.model_validate(values)


def parse_structured_response(
    text: str, kind: str, expects_json: bool = False
) -> Tuple[str, Optional[StructuredFields], bool]:
    """Turn raw provider text into (display text, structured fields, degraded).

    ``degraded`` is True only when JSON was expected and every strategy
    failed, leaving plain prose.
    """
    data = parse_json_from_text(text)
    if isinstance(data, dict):
        fields = _lenient_fields(data, kind)
        if _has_content(fields):
            display = fields.interpretation or fields.core_message or text
            return display, fields, False

    insights: Dict[str, str] = {}
    if kind == "birth_chart":
        for name, keyword in BIRTH_CHART_SECTIONS.items():
            section = extract_section(text, keyword)
            if section:
                insights[name] = section

    if expects_json:
        log.info("parse degraded to prose for %s response (%d chars)", kind, len(text or ""))
    structured = StructuredFields(insights=insights) if insights else None
    return text, structured, expects_json
