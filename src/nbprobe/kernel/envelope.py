"""Envelope codec: wrap code so its outcome can be recovered from stdout.

The wrapped code runs the caller's fragment inside a guarded block and writes
exactly one result line, ``<marker><compact-json>``, where the JSON is either
``{"ok":true}`` or ``{"ok":false,"exc_type":...,"message":...,"traceback":...}``.
"""

import json
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from nbprobe.kernel.outputs import dedupe_errors, truncate_summary

TMP_PREFIX = "__nbprobe_tmp__"
DEFAULT_EXC_TYPE = "Error"
DEFAULT_ENVELOPE_ERROR_MESSAGE = "Kernel command failed."


@dataclass
class EnvelopeResult:
    """Structured outcome recovered from the marker line."""
    ok: Optional[bool] = None
    exc_type: Optional[str] = None
    message: Optional[str] = None
    traceback: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "EnvelopeResult":
        def text(key: str) -> Optional[str]:
            value = data.get(key)
            return value if isinstance(value, str) else None

        ok = data.get("ok")
        return cls(
            ok=ok if isinstance(ok, bool) else None,
            exc_type=text("exc_type"),
            message=text("message"),
            traceback=text("traceback"),
        )


@dataclass
class Extraction:
    cleaned_output: str
    result: Optional[EnvelopeResult] = None


@dataclass
class ErrorSelection:
    """The single error shown to users, and where it came from."""
    message: Optional[str] = None
    traceback: Optional[str] = None
    source: Optional[str] = None  # "envelope" or "transport"


def new_marker(kind: str = "result") -> str:
    """Create a fresh single-use marker (timestamp + random suffix)."""
    return f"__nbprobe_{kind}__{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}__"


def build_start_statement(start_marker: str) -> str:
    """First statement of a wrapped run; announces that execution began."""
    return f"print({start_marker!r}, flush=True)"


def build_envelope(code: str, marker: str) -> str:
    """Wrap code in a guarded block that reports its outcome after ``marker``."""
    safe_code = code if code.strip() else "pass"
    p = TMP_PREFIX
    return "\n".join([
        f"import json as {p}json",
        f"import sys as {p}sys",
        f"import traceback as {p}traceback",
        f"{p}code = {safe_code!r}",
        "try:",
        f'    exec(compile({p}code, "<nbprobe>", "exec"), globals(), globals())',
        f'    {p}sys.stdout.write({marker!r} + {p}json.dumps({{"ok": True}}, separators=(",", ":")) + "\\n")',
        f"    {p}sys.stdout.flush()",
        f"except BaseException as {p}exc:",
        f"    {p}sys.stdout.write({marker!r} + {p}json.dumps({{",
        '        "ok": False,',
        f'        "exc_type": type({p}exc).__name__,',
        f'        "message": str({p}exc),',
        f'        "traceback": {p}traceback.format_exc(),',
        '    }, separators=(",", ":")) + "\\n")',
        f"    {p}sys.stdout.flush()",
    ])


def extract_envelope_result(output: str, marker: str) -> Extraction:
    """Pull the marker line out of free-form output.

    The marker may follow text left on an unterminated line (``end=""``,
    progress bars); that text stays visible. Marker lines that fail to parse
    stay in the visible output. When several marker lines parse, the last
    one wins.
    """
    kept: list[str] = []
    result: Optional[EnvelopeResult] = None

    for line in output.splitlines():
        index = line.find(marker)
        if index < 0:
            kept.append(line)
            continue
        prefix = line[:index]
        payload = line[index + len(marker):].strip()
        try:
            parsed = json.loads(payload)
        except ValueError:
            kept.append(line)
            continue
        if not isinstance(parsed, dict):
            kept.append(line)
            continue
        result = EnvelopeResult.from_dict(parsed)
        if prefix:
            kept.append(prefix)

    return Extraction(cleaned_output="\n".join(kept), result=result)


def summarize_envelope_error(result: EnvelopeResult) -> tuple[str, Optional[str]]:
    """Render ``"<exc_type>: <message>"`` plus the untruncated traceback."""
    exc_type = (result.exc_type or "").strip() or DEFAULT_EXC_TYPE
    message = (result.message or "").strip() or DEFAULT_ENVELOPE_ERROR_MESSAGE
    summary = message if message.startswith(f"{exc_type}:") else f"{exc_type}: {message}"
    traceback = (result.traceback or "").strip() or None
    return truncate_summary(summary), traceback


def select_execution_error(
    transport_errors: list[str],
    envelope_result: Optional[EnvelopeResult] = None,
) -> ErrorSelection:
    """Pick the one error to report.

    A failed envelope always wins; a successful envelope silences transport
    noise; without an envelope the joined transport errors are used.
    """
    if envelope_result is not None and envelope_result.ok is False:
        summary, traceback = summarize_envelope_error(envelope_result)
        return ErrorSelection(message=summary, traceback=traceback, source="envelope")

    if envelope_result is not None and envelope_result.ok is True:
        return ErrorSelection()

    transport_message = dedupe_errors(transport_errors)
    if not transport_message:
        return ErrorSelection()
    return ErrorSelection(message=transport_message, source="transport")
