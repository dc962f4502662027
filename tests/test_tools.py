"""
Tests for the tool catalog.

Tests cover:
- Tool definitions and published schemas
- Argument validation
"""

import pytest

from figma_tools import (
    TOOLS,
    TOOLS_BY_NAME,
    ToolValidationError,
    get_tool,
    to_json_text,
    validate_arguments,
)


class TestToolDefinitions:
    def test_names_are_unique(self):
        names = [tool.name for tool in TOOLS]
        assert len(names) == len(set(names))
        assert set(TOOLS_BY_NAME) == set(names)

    def test_relay_local_tools_present(self):
        for name in (
            "batch_calls",
            "get_events",
            "clear_events",
            "join_channel",
            "leave_channel",
            "list_channels",
            "diff_snapshots",
            "export_image_to_file",
        ):
            assert get_tool(name) is not None

    def test_every_tool_has_description_and_object_schema(self):
        for tool in TOOLS:
            schema = tool.input_schema()
            assert tool.description
            assert schema["type"] == "object"
            assert "properties" in schema
            assert "title" not in schema

    def test_schema_uses_camel_case(self):
        schema = get_tool("get_node_info").input_schema()
        assert "nodeId" in schema["properties"]
        assert "node_id" not in schema["properties"]
        assert schema["required"] == ["nodeId"]

    def test_no_args_tool_schema(self):
        schema = get_tool("list_channels").input_schema()
        assert schema["properties"] == {}


class TestValidation:
    def test_valid_arguments(self):
        args = validate_arguments("get_node_info", {"nodeId": "1:2", "depth": 1})
        assert args.node_id == "1:2"
        assert args.depth == 1

    def test_missing_required_field(self):
        with pytest.raises(ToolValidationError) as exc_info:
            validate_arguments("get_node_info", {})
        assert str(exc_info.value).startswith("Invalid arguments for get_node_info")
        assert exc_info.value.code == "invalid_arguments"

    def test_unknown_property_rejected(self):
        with pytest.raises(ToolValidationError):
            validate_arguments("get_node_info", {"nodeId": "1:2", "bogus": True})

    def test_snake_case_keys_rejected(self):
        with pytest.raises(ToolValidationError):
            validate_arguments("get_node_info", {"node_id": "1:2"})

    def test_nested_models_validated(self):
        validate_arguments("set_fill_color", {"nodeId": "1:2", "color": {"r": 1, "g": 0.5, "b": 0}})
        with pytest.raises(ToolValidationError):
            validate_arguments("set_fill_color", {"nodeId": "1:2", "color": {"red": 1}})

    def test_enum_values_enforced(self):
        validate_arguments("export_node_as_image", {"nodeId": "1:2", "format": "SVG"})
        with pytest.raises(ToolValidationError):
            validate_arguments("export_node_as_image", {"nodeId": "1:2", "format": "GIF"})

    def test_numeric_bounds_enforced(self):
        with pytest.raises(ToolValidationError):
            validate_arguments("get_events", {"limit": 0})

    def test_arguments_must_be_object(self):
        with pytest.raises(ToolValidationError):
            validate_arguments("get_selection", ["depth", 1])

    def test_none_means_empty_arguments(self):
        assert validate_arguments("get_document_info", None) is not None

    def test_unknown_tool_is_not_validated(self):
        assert validate_arguments("some_future_tool", {"anything": 1}) is None

    def test_batch_call_requires_name(self):
        with pytest.raises(ToolValidationError):
            validate_arguments("batch_calls", {"calls": [{"arguments": {}}]})


def test_to_json_text_is_pretty_printed():
    assert to_json_text({"a": 1}) == '{\n  "a": 1\n}'
