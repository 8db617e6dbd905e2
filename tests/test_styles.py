"""Tests for style serialization and format presets."""

from sheetlens.engine.styles import (
    FORMAT_PRESETS,
    merge_style,
    parse_style,
    resolve_preset,
    serialize_style,
    style_from_format_input,
)


class TestSerialization:
    """Test style parsing and serialization."""

    def test_serialize_is_canonical(self):
        """Test equal styles serialize to equal strings."""
        a = serialize_style({"font": {"bold": True}, "fill": {"color": "#FFF000"}})
        b = serialize_style({"fill": {"color": "#FFF000"}, "font": {"bold": True}})
        assert a == b

    def test_empty_style_serializes_to_none(self):
        """Test an empty style is stored as no style."""
        assert serialize_style({}) is None

    def test_malformed_style_parses_empty(self):
        """Test malformed JSON is treated as an empty style."""
        assert parse_style("{not json") == {}
        assert parse_style("[1, 2]") == {}
        assert parse_style(None) == {}


class TestMerge:
    """Test style merging."""

    def test_sections_merge_shallowly(self):
        """Test font keys are merged, not replaced."""
        merged = merge_style({"font": {"bold": True, "size": 10}}, {"font": {"size": 12}})
        assert merged == {"font": {"bold": True, "size": 12}}

    def test_number_format_replaced(self):
        """Test numberFormat replaces the previous value."""
        merged = merge_style({"numberFormat": "0.00"}, {"numberFormat": "0%"})
        assert merged == {"numberFormat": "0%"}

    def test_existing_style_not_mutated(self):
        """Test merging returns a new dict."""
        existing = {"font": {"bold": True}}
        merge_style(existing, {"font": {"italic": True}})
        assert existing == {"font": {"bold": True}}


class TestFormatInput:
    """Test tool input translation."""

    def test_explicit_format_object(self):
        """Test a ready-made format object is used directly."""
        style = style_from_format_input({"format": {"number_format": "0.0", "font": {"bold": True}}})
        assert style == {"numberFormat": "0.0", "font": {"bold": True}}

    def test_flat_fields(self):
        """Test the flat format_range fields."""
        style = style_from_format_input(
            {"number_format": "0%", "fill_color": "#FF0000", "alignment": {"horizontal": "left"}}
        )
        assert style == {
            "numberFormat": "0%",
            "fill": {"color": "#FF0000"},
            "alignment": {"horizontal": "left"},
        }

    def test_presets(self):
        """Test every preset resolves by name."""
        for name, preset in FORMAT_PRESETS.items():
            assert resolve_preset({"style_type": name}) == preset

    def test_preset_number_format_override(self):
        """Test an explicit number_format overrides the preset."""
        style = resolve_preset({"style_type": "currency", "number_format": "€#,##0"})
        assert style == {"numberFormat": "€#,##0"}

    def test_preset_name_is_case_insensitive(self):
        """Test preset names are matched case-insensitively."""
        assert resolve_preset({"preset": "Header"}) == FORMAT_PRESETS["header"]

    def test_unknown_preset(self):
        """Test unknown presets resolve to an empty style."""
        assert resolve_preset({"style_type": "sparkly"}) == {}
