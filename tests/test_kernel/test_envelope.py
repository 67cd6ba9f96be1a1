"""Tests for the envelope codec."""

import contextlib
import io
import json

from nbprobe.kernel.envelope import (
    EnvelopeResult,
    build_envelope,
    build_start_statement,
    extract_envelope_result,
    new_marker,
    select_execution_error,
    summarize_envelope_error,
)

MARKER = "__nbprobe_result__1700000000000_abcd1234__"


def run_wrapped(code, namespace=None):
    """Execute wrapped code the way a kernel would and capture stdout."""
    namespace = {} if namespace is None else namespace
    buffer = io.StringIO()
    with contextlib.redirect_stdout(buffer):
        exec(compile(build_envelope(code, MARKER), "<cell>", "exec"), namespace)
    return buffer.getvalue()


class TestMarkers:
    def test_markers_are_unique(self):
        assert new_marker() != new_marker()

    def test_marker_format(self):
        marker = new_marker("start")
        assert marker.startswith("__nbprobe_start__")
        assert marker.endswith("__")

    def test_start_statement_prints_marker(self):
        buffer = io.StringIO()
        with contextlib.redirect_stdout(buffer):
            exec(build_start_statement("START"), {})
        assert buffer.getvalue() == "START\n"


class TestBuildEnvelope:
    def test_success_line(self):
        output = run_wrapped('print("hi")')
        assert output == f'hi\n{MARKER}{{"ok":true}}\n'

    def test_failure_line(self):
        output = run_wrapped('raise ValueError("boom")')
        line = output.strip().splitlines()[-1]
        payload = json.loads(line[len(MARKER):])
        assert payload["ok"] is False
        assert payload["exc_type"] == "ValueError"
        assert payload["message"] == "boom"
        assert "ValueError: boom" in payload["traceback"]

    def test_empty_code(self):
        assert run_wrapped("") == f'{MARKER}{{"ok":true}}\n'

    def test_code_with_quotes_and_newlines(self):
        output = run_wrapped("s = '''a\n\"b\"'''\nprint(len(s))")
        assert output.startswith("5\n")

    def test_runs_in_caller_namespace(self):
        namespace = {}
        run_wrapped("x = 3", namespace)
        run_wrapped("y = x * 2", namespace)
        assert namespace["y"] == 6

    def test_catches_system_exit(self):
        output = run_wrapped("raise SystemExit(2)")
        assert '"exc_type":"SystemExit"' in output


class TestExtractEnvelopeResult:
    def test_strips_marker_line(self):
        extraction = extract_envelope_result(f'A\n{MARKER}{{"ok":true}}\n', MARKER)
        assert extraction.cleaned_output == "A"
        assert extraction.result.ok is True

    def test_no_marker(self):
        extraction = extract_envelope_result("just output\n", MARKER)
        assert extraction.cleaned_output == "just output"
        assert extraction.result is None

    def test_malformed_marker_line_is_kept(self):
        output = f"{MARKER}not json\nA"
        extraction = extract_envelope_result(output, MARKER)
        assert extraction.result is None
        assert extraction.cleaned_output == output

    def test_last_result_wins(self):
        output = f'{MARKER}{{"ok":false,"message":"first"}}\n{MARKER}{{"ok":true}}'
        extraction = extract_envelope_result(output, MARKER)
        assert extraction.result.ok is True
        assert extraction.cleaned_output == ""

    def test_ignores_other_markers(self):
        other = "__nbprobe_result__1_ffffffff__"
        extraction = extract_envelope_result(f'{other}{{"ok":true}}', MARKER)
        assert extraction.result is None

    def test_marker_after_unterminated_line(self):
        output = f'A{MARKER}{{"ok":false,"exc_type":"ValueError","message":"boom"}}\n'
        extraction = extract_envelope_result(output, MARKER)
        assert extraction.result.ok is False
        assert extraction.result.exc_type == "ValueError"
        assert extraction.cleaned_output == "A"

    def test_wrapped_failure_without_trailing_newline(self):
        output = run_wrapped('print("A", end=""); raise ValueError("boom")')
        extraction = extract_envelope_result(output, MARKER)
        assert extraction.result.ok is False
        assert extraction.result.message == "boom"
        assert extraction.cleaned_output == "A"


class TestSummarizeEnvelopeError:
    def test_prefixes_type(self):
        summary, traceback = summarize_envelope_error(
            EnvelopeResult(ok=False, exc_type="KeyError", message="'x'", traceback="tb")
        )
        assert summary == "KeyError: 'x'"
        assert traceback == "tb"

    def test_no_double_prefix(self):
        summary, _ = summarize_envelope_error(
            EnvelopeResult(ok=False, exc_type="ValueError", message="ValueError: bad")
        )
        assert summary == "ValueError: bad"

    def test_defaults(self):
        summary, traceback = summarize_envelope_error(EnvelopeResult(ok=False))
        assert summary == "Error: Kernel command failed."
        assert traceback is None

    def test_truncates_summary_only(self):
        long_message = "x" * 1000
        summary, traceback = summarize_envelope_error(
            EnvelopeResult(ok=False, exc_type="E", message=long_message, traceback=long_message)
        )
        assert len(summary) == 403
        assert summary.endswith("...")
        assert traceback == long_message


class TestSelectExecutionError:
    def test_envelope_failure_wins(self):
        selection = select_execution_error(
            ["Transport: noise"], EnvelopeResult(ok=False, exc_type="E", message="m")
        )
        assert selection.message == "E: m"
        assert selection.source == "envelope"

    def test_envelope_success_silences_transport(self):
        selection = select_execution_error(["Transport: noise"], EnvelopeResult(ok=True))
        assert selection.message is None

    def test_transport_errors_deduped(self):
        selection = select_execution_error(["a", "b", "a", "  "])
        assert selection.message == "a; b"
        assert selection.source == "transport"

    def test_nothing_to_report(self):
        assert select_execution_error([]).message is None
