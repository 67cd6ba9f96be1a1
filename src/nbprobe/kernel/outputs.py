"""Kernel output decoding and error classification."""

import json
import re
from typing import Any, Iterable, Optional

from nbprobe.kernel.types import (
    ERROR_MIME,
    MARIMO,
    STDERR_MIME,
    TEXT_HTML_MIME,
    OutputItem,
)

MAX_ERROR_SUMMARY_LENGTH = 400

# Decoded in this order; &amp; last so "&amp;lt;" stays "&lt;".
HTML_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&amp;", "&"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)

_LINE_BREAK_TAGS = re.compile(r"<br\s*/?>|</p>|</div>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")


def decode_output_item(item: OutputItem) -> Optional[str]:
    """Decode an output item's payload to text."""
    data: Any = item.data
    if data is None:
        return None
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data).decode("utf-8", errors="replace")
    if isinstance(data, str):
        return data
    try:
        return json.dumps(data)
    except (TypeError, ValueError):
        return None


def decode_html_entities(value: str) -> str:
    for entity, char in HTML_ENTITIES:
        value = value.replace(entity, char)
    return value


def html_to_plain_text(value: str) -> str:
    """Reduce an HTML fragment to plain text, keeping line breaks."""
    with_breaks = _LINE_BREAK_TAGS.sub("\n", value)
    without_tags = _ANY_TAG.sub("", with_breaks)
    return decode_html_entities(without_tags).strip()


def truncate_summary(value: str, limit: int = MAX_ERROR_SUMMARY_LENGTH) -> str:
    """Trim an error summary to the UI character budget."""
    normalized = value.replace("\r", "").strip()
    if len(normalized) > limit:
        return f"{normalized[:limit]}..."
    return normalized


def normalize_kernel_error(raw: str) -> str:
    """Render a provider error payload for display.

    Providers send either JSON ``{"name": ..., "message": ...}`` or raw text.
    """
    try:
        parsed = json.loads(raw)
    except ValueError:
        return raw
    if isinstance(parsed, dict) and parsed.get("message"):
        name = parsed.get("name")
        message = str(parsed["message"])
        return f"{name}: {message}" if name else message
    return raw


def dedupe_errors(errors: Iterable[str]) -> Optional[str]:
    """Join non-empty errors, dropping duplicates but keeping arrival order."""
    cleaned = [error.strip() for error in errors if error and error.strip()]
    unique = list(dict.fromkeys(cleaned))
    if not unique:
        return None
    return "; ".join(unique)


def _normalize_fallback_error(value: str) -> str:
    return truncate_summary(normalize_kernel_error(value))


def classify_output(
    provider: str,
    output_channel: Optional[str],
    item: OutputItem,
    error_mime: str = ERROR_MIME,
    stderr_mime: str = STDERR_MIME,
) -> Optional[str]:
    """Return a normalized error message if the item is an error signal.

    The universal error mime is an error for every provider. The channel
    heuristics below apply to marimo only, whose failures arrive on the
    ``marimo-error`` and ``stderr`` channels instead; stderr chatter from
    other providers is ordinary output.
    """
    decoded = decode_output_item(item)
    decoded = decoded.strip() if decoded else ""
    if not decoded:
        return None

    if item.mime == error_mime:
        return _normalize_fallback_error(decoded)

    if provider != MARIMO:
        return None

    if output_channel == "marimo-error":
        raw = html_to_plain_text(decoded) if item.mime == TEXT_HTML_MIME else decoded
        return _normalize_fallback_error(raw)

    if output_channel == "stderr" and item.mime == stderr_mime:
        return _normalize_fallback_error(decoded)

    return None


def extract_last_json_line(output: str) -> Optional[str]:
    """Find the last line of output that looks like a JSON document."""
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    for line in reversed(lines):
        if line.startswith("{") or line.startswith("[") or line == "null":
            return line
    return None
