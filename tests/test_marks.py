"""Tests for marks, tie-breaking and brushes."""

import pytest

from gridsync.marks import EMPTY, Brush, BrushMode, Mark, MarkKind, tie_break


class TestMarkConstructors:
    """Tests for Mark normalization."""

    def test_zero_values_are_empty(self):
        """Test that zero-like values collapse to EMPTY."""
        assert Mark.of_bool(False) is EMPTY
        assert Mark.of_intensity(0) is EMPTY
        assert Mark.of_color("") is EMPTY

    def test_non_empty_marks(self):
        """Test constructing non-empty marks."""
        assert Mark.of_bool(True) == Mark(MarkKind.BOOL, 1)
        assert Mark.of_intensity(200).value == 200
        assert Mark.of_color("#ff8800").kind is MarkKind.COLOR
        assert not Mark.of_color("red").is_empty

    def test_intensity_out_of_range(self):
        """Test intensity must fit in a byte."""
        with pytest.raises(ValueError):
            Mark.of_intensity(256)
        with pytest.raises(ValueError):
            Mark.of_intensity(-1)


class TestTieBreak:
    """Tests for the equal-timestamp resolution rule."""

    def test_numeric_max(self):
        """Test intensity ties resolve to the larger value."""
        seven, two = Mark.of_intensity(7), Mark.of_intensity(2)

        assert tie_break(seven, two) == seven
        assert tie_break(two, seven) == seven

    def test_set_beats_erase(self):
        """Test a painted cell wins over an erased one."""
        painted = Mark.of_bool(True)

        assert tie_break(EMPTY, painted) == painted
        assert tie_break(painted, EMPTY) == painted

    def test_color_lexicographic(self):
        """Test colors resolve by id order."""
        assert tie_break(Mark.of_color("#00ff00"), Mark.of_color("#ff0000")) == Mark.of_color("#ff0000")

    def test_idempotent(self):
        """Test tie_break(a, a) == a."""
        mark = Mark.of_intensity(42)
        assert tie_break(mark, mark) == mark

    def test_associative(self):
        """Test grouping does not matter for three candidates."""
        a, b, c = Mark.of_intensity(3), Mark.of_intensity(9), EMPTY

        assert tie_break(tie_break(a, b), c) == tie_break(a, tie_break(b, c))


class TestMarkKindCodec:
    """Tests for text and wire conversions."""

    def test_parse(self):
        """Test parsing config text."""
        assert MarkKind.BOOL.parse("1") == Mark.of_bool(True)
        assert MarkKind.BOOL.parse("0") is EMPTY
        assert MarkKind.INTENSITY.parse(" 128 ") == Mark.of_intensity(128)
        assert MarkKind.COLOR.parse("#abcdef") == Mark.of_color("#abcdef")

    def test_parse_invalid(self):
        """Test invalid text is rejected."""
        with pytest.raises(ValueError):
            MarkKind.BOOL.parse("2")
        with pytest.raises(ValueError):
            MarkKind.INTENSITY.parse("bright")

    def test_to_wire(self):
        """Test wire values per kind."""
        assert MarkKind.BOOL.to_wire(Mark.of_bool(True)) == 1
        assert MarkKind.BOOL.to_wire(EMPTY) == 0
        assert MarkKind.INTENSITY.to_wire(Mark.of_intensity(9)) == 9
        assert MarkKind.COLOR.to_wire(EMPTY) == ""

    def test_to_wire_kind_mismatch(self):
        """Test a mark of another kind cannot be encoded."""
        with pytest.raises(ValueError):
            MarkKind.BOOL.to_wire(Mark.of_intensity(9))

    def test_from_wire_rejects_wrong_types(self):
        """Test wire values of the wrong type are rejected."""
        with pytest.raises(ValueError):
            MarkKind.BOOL.from_wire(True)
        with pytest.raises(ValueError):
            MarkKind.COLOR.from_wire(3)
        with pytest.raises(ValueError):
            MarkKind.INTENSITY.from_wire(300)


class TestBrush:
    """Tests for paint value selection."""

    def test_toggle_paints_empty_cell(self):
        brush = Brush(Mark.of_bool(True))
        assert brush.paint_value(EMPTY) == Mark.of_bool(True)

    def test_toggle_erases_painted_cell(self):
        brush = Brush(Mark.of_color("#112233"))
        assert brush.paint_value(Mark.of_color("#445566")) is EMPTY

    def test_fixed_always_paints(self):
        brush = Brush(Mark.of_intensity(5), BrushMode.FIXED)

        assert brush.paint_value(EMPTY) == Mark.of_intensity(5)
        assert brush.paint_value(Mark.of_intensity(200)) == Mark.of_intensity(5)
