import pytest
from pydantic import BaseModel, Field, ValidationError

from complaint_agent.agent.registry import ToolRegistry, ToolSpec, simplify_schema


class EchoInput(BaseModel):
    value: int = Field(ge=1, description="positive number")
    label: str | None = Field(default=None, description="optional label")


def test_tool_registry_validation() -> None:
    registry = ToolRegistry()

    def _handler(data: EchoInput) -> str:
        return str(data.value)

    registry.register(
        ToolSpec(
            name="echo",
            description="echo positive int",
            args_schema=EchoInput,
            handler=_handler,
        )
    )

    assert registry.execute("echo", {"value": 3}) == {"text": "3"}

    with pytest.raises(ValidationError):
        registry.execute("echo", {"value": 0})

    with pytest.raises(KeyError):
        registry.execute("missing", {})


def test_duplicate_tool_registration_rejected() -> None:
    registry = ToolRegistry()

    def _handler(data: EchoInput) -> str:
        return str(data.value)

    spec = ToolSpec(
        name="echo",
        description="echo positive int",
        args_schema=EchoInput,
        handler=_handler,
    )

    registry.register(spec)
    with pytest.raises(ValueError):
        registry.register(spec)


def test_declarations_use_simplified_schema() -> None:
    registry = ToolRegistry()
    registry.register(
        ToolSpec(
            name="echo",
            description="echo positive int",
            args_schema=EchoInput,
            handler=lambda data: {"value": data.value},
        )
    )

    [declaration] = registry.declarations()

    assert declaration.name == "echo"
    assert declaration.parameter_schema == {
        "type": "object",
        "properties": {
            "value": {"type": "integer", "description": "positive number"},
            "label": {"type": "string", "description": "optional label"},
        },
        "required": ["value"],
    }


def test_simplify_schema_resolves_refs_and_enums() -> None:
    schema = {
        "type": "object",
        "title": "Outer",
        "properties": {"mode": {"$ref": "#/$defs/Mode"}, "tags": {"type": "array", "items": {"type": "string"}}},
        "required": ["mode"],
        "$defs": {"Mode": {"enum": ["tracking", "enquiry"], "title": "Mode"}},
    }

    assert simplify_schema(schema) == {
        "type": "object",
        "properties": {
            "mode": {"type": "string", "enum": ["tracking", "enquiry"]},
            "tags": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["mode"],
    }
