"""Tests for the free-text output parsing helpers."""

import hashlib

import pytest

from agent_viz.services.output_parsing import (
    extract_background_agent_id,
    extract_output_file,
    is_background_launch,
    is_error_output,
    make_key,
    parse_usage,
    truncate,
)


class TestMakeKey:
    """Tests for derived agent keys."""

    def test_first_twelve_hex_chars_of_sha1(self):
        expected = hashlib.sha1(b"s1:review the diff").hexdigest()[:12]
        assert make_key("s1", "review the diff") == expected

    def test_same_session_and_description_reuse_key(self):
        assert make_key("s1", "d1") == make_key("s1", "d1")

    def test_different_session_changes_key(self):
        assert make_key("s1", "d1") != make_key("s2", "d1")


class TestTruncate:

    def test_truncates_to_limit(self):
        assert truncate("abcdef", 3) == "abc"

    def test_non_string_is_none(self):
        assert truncate(None, 10) is None
        assert truncate(42, 10) is None


class TestParseUsage:
    """Tests for usage extraction."""

    def test_usage_block(self):
        output = "Done.\n<usage>\ntotal_tokens: 5000\ntool_uses: 12\nduration_ms: 30000\n</usage>"
        usage = parse_usage(output)

        assert usage.total_tokens == 5000
        assert usage.tool_uses == 12
        assert usage.duration_ms == 30000

    def test_block_takes_precedence_over_surrounding_text(self):
        output = "total_tokens: 1\n<usage>total_tokens: 900</usage>"
        assert parse_usage(output).total_tokens == 900

    def test_bare_counters_without_block(self):
        usage = parse_usage("finished, tool_uses 3")
        assert usage.tool_uses == 3
        assert usage.total_tokens == 0

    def test_no_counters(self):
        assert parse_usage("all good") is None

    def test_non_string(self):
        assert parse_usage(None) is None


class TestIsErrorOutput:
    """Tests for the error heuristic."""

    def test_explicit_flag_wins(self):
        assert is_error_output(False, "Traceback (most recent call last)") is False
        assert is_error_output(True, "all fine") is True

    @pytest.mark.parametrize("text", [
        "Error: file not found",
        "the build FAILED",
        "raised an Exception",
        "Traceback (most recent call last)",
    ])
    def test_error_vocabulary(self, text):
        assert is_error_output(None, text) is True

    def test_word_boundaries(self):
        assert is_error_output(None, "no errors found, terror averted") is False

    def test_only_first_500_chars_sniffed(self):
        assert is_error_output(None, "x" * 500 + " failed ") is False

    def test_missing_output(self):
        assert is_error_output(None, None) is False


class TestBackgroundLaunch:
    """Tests for launch acknowledgment parsing."""

    LAUNCH = "Async agent launched\noutput_file: /tmp/x\nagentId: a1"

    def test_extracts_output_file_and_agent_id(self):
        assert extract_output_file(self.LAUNCH) == "/tmp/x"
        assert extract_background_agent_id(self.LAUNCH) == "a1"

    def test_missing_fields(self):
        assert extract_output_file("nothing here") is None
        assert extract_background_agent_id(None) is None

    def test_launch_requires_background(self):
        assert is_background_launch(False, self.LAUNCH) is False

    def test_null_output_is_launch(self):
        assert is_background_launch(True, None) is True

    def test_marker_is_case_insensitive(self):
        assert is_background_launch(True, "async AGENT launched") is True

    def test_real_result_is_not_launch(self):
        assert is_background_launch(True, "Here is the summary") is False
