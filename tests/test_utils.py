"""Tests for formatting and naming helpers."""

from dbfab.core.generation import plan_chunks
from dbfab.core.utils import format_bytes, format_duration, get_lookup_name


class TestLookupName:
    """Test hoisted lookup naming."""

    def test_stable_and_shared(self):
        """Equal lists share a name; different lists do not."""
        name = get_lookup_name(["a", "b"])
        assert name == get_lookup_name(("a", "b"))
        assert name != get_lookup_name(["b", "a"])
        assert name.startswith("_lookup_")
        assert len(name) == len("_lookup_") + 12


class TestFormatting:
    """Test human readable formatting."""

    def test_format_bytes(self):
        assert format_bytes(512) == "512 B"
        assert format_bytes(1536) == "1.50 KB"
        assert format_bytes(5 * 1024 * 1024) == "5.00 MB"

    def test_format_duration(self):
        assert format_duration(850) == "850ms"
        assert format_duration(12340) == "12.34s"
        assert format_duration(185000) == "3m 05s"
        assert format_duration(3723000) == "1h 02m 03s"


class TestPlanChunks:
    """Test chunk planning."""

    def test_single_chunk(self):
        """No batch size means one statement."""
        assert plan_chunks(100) == [100]
        assert plan_chunks(100, 500) == [100]

    def test_remainder(self):
        """The last chunk carries the remainder."""
        assert plan_chunks(10, 3) == [3, 3, 3, 1]
        assert plan_chunks(9, 3) == [3, 3, 3]

    def test_empty(self):
        """Zero rows need no statements."""
        assert plan_chunks(0, 3) == []
