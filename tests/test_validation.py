"""Tests for tool-argument validation."""

from nbchat.llm.types import FunctionCall, ToolCallRequest
from nbchat.tools.validation import ToolValidator
from tests.mock_tools import EchoTool, SlowTool


def call(arguments: str) -> ToolCallRequest:
    return ToolCallRequest(index=0, id="c1", type="function",
                           function=FunctionCall("echo", arguments))


class TestValidate:
    def test_valid_arguments(self):
        assert ToolValidator.validate(EchoTool(), {"message": "hi"}) is None

    def test_missing_required(self):
        error = ToolValidator.validate(EchoTool(), {})
        assert "'message' is a required property" in error

    def test_wrong_type_reports_location(self):
        error = ToolValidator.validate(EchoTool(), {"message": 3})
        assert error.startswith("message: ")

    def test_extra_property_rejected(self):
        error = ToolValidator.validate(EchoTool(), {"message": "hi", "extra": 1})
        assert "extra" in error

    def test_schema_without_type_defaults_to_object(self):
        assert ToolValidator.validate(SlowTool(), {}) is None
        assert ToolValidator.validate(SlowTool(), []) is not None


class TestCheckCall:
    def test_parses_and_validates(self):
        arguments, error = ToolValidator.check_call(EchoTool(), call('{"message": "hi"}'))
        assert arguments == {"message": "hi"}
        assert error is None

    def test_empty_arguments_are_an_empty_object(self):
        arguments, error = ToolValidator.check_call(SlowTool(), call(""))
        assert arguments == {}
        assert error is None

    def test_invalid_json(self):
        arguments, error = ToolValidator.check_call(EchoTool(), call("{nope"))
        assert arguments == {}
        assert "not valid JSON" in error

    def test_non_object(self):
        _, error = ToolValidator.check_call(EchoTool(), call("[1, 2]"))
        assert error == "arguments must be a JSON object"
