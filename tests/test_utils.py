"""Unit tests for utility functions."""

import pytest

from pyargon.utils import (
    CHUNK_BUDGET,
    compact_json,
    format_duration,
    format_size,
    serialized_size,
)


class TestCompactJson:
    """Tests for compact_json and serialized_size."""

    def test_no_whitespace(self):
        """Test the transport serialization."""
        assert compact_json({"Action": "update", "Source": "a b"}) == (
            '{"Action":"update","Source":"a b"}'
        )

    def test_size_counts_utf8_bytes(self):
        """Test that non-ASCII text is counted in bytes."""
        assert compact_json("é") == '"é"'
        assert serialized_size("é") == 4

    def test_list_size(self):
        """Test that brackets and commas are counted."""
        assert serialized_size([1, 2]) == 5
        assert serialized_size([]) == 2

    def test_budget(self):
        """Test the chunk budget value."""
        assert CHUNK_BUDGET == 1_020_000


class TestFormatSize:
    """Tests for format_size function."""

    @pytest.mark.parametrize(
        "size,expected",
        [
            (0, "0 B"),
            (1023, "1023 B"),
            (1536, "1.5 KB"),
            (5 * 1024 * 1024, "5.0 MB"),
            (3 * 1024 * 1024 * 1024, "3.0 GB"),
        ],
    )
    def test_units(self, size, expected):
        """Test unit selection."""
        assert format_size(size) == expected


class TestFormatDuration:
    """Tests for format_duration function."""

    def test_zero(self):
        """Test a zero duration."""
        assert format_duration(0) == "00:00:00"

    def test_hours_minutes_seconds(self):
        """Test a long duration."""
        assert format_duration((2 * 3600 + 3 * 60 + 4) * 1000 + 999) == "02:03:04"

    def test_negative_clamped(self):
        """Test that negative durations show as zero."""
        assert format_duration(-5000) == "00:00:00"
