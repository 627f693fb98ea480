from pydantic import BaseModel

from complaint_agent.agent.registry import ToolRegistry, ToolSpec


class EchoInput(BaseModel):
    text: str


def _registry() -> ToolRegistry:
    registry = ToolRegistry()

    def _handler(data: EchoInput) -> dict[str, str]:
        return {"echo": data.text.upper()}

    registry.register(
        ToolSpec(
            name="echo",
            description="uppercase",
            args_schema=EchoInput,
            handler=_handler,
        )
    )
    return registry


def test_tool_observer_captures_latency_and_payload() -> None:
    registry = _registry()

    observed = []
    registry.set_observer(observed.append)
    result = registry.execute("echo", {"text": "hello"})
    registry.set_observer(None)

    assert result == {"echo": "HELLO"}
    assert len(observed) == 1
    assert observed[0].name == "echo"
    assert observed[0].input_payload == {"text": "hello"}
    assert observed[0].output_preview == '{"echo": "HELLO"}'
    assert observed[0].latency_ms >= 0.0


def test_per_call_observer_overrides_registry_observer() -> None:
    registry = _registry()
    shared = []
    per_call = []
    registry.set_observer(shared.append)

    registry.execute("echo", {"text": "hi"}, observer=per_call.append)

    assert shared == []
    assert [trace.name for trace in per_call] == ["echo"]
