import asyncio
from typing import Any

import pytest
from google.genai import types
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from complaint_agent.config import GenerationConfig, ProviderSettings, TierConfig
from complaint_agent.errors import ProviderError, SessionStateError
from complaint_agent.providers.clients import CredentialClientCache
from complaint_agent.providers.gemini import GeminiAdapter, to_gemini_schema
from complaint_agent.providers.openrouter import OpenRouterAdapter, to_openai_schema
from complaint_agent.types import Attachment, ConversationMessage, ToolDeclaration, ToolResult

PNR_TOOL = ToolDeclaration(
    name="validatePNR",
    description="Validate a PNR",
    parameter_schema={
        "type": "object",
        "properties": {
            "pnr": {"type": "string", "description": "10 digits", "title": "Pnr"},
            "kind": {"type": "string", "enum": ["a", "b"]},
        },
        "required": ["pnr"],
        "additionalProperties": False,
    },
)


class _FakeChatModel:
    """Stands in for ChatOpenAI: records requests and replays scripted replies."""

    def __init__(self, replies: list[Any]) -> None:
        self.replies = list(replies)
        self.requests: list[list[Any]] = []
        self.bound_tools: list[Any] = []
        self.bound_kwargs: dict[str, Any] = {}

    def bind_tools(self, tools: list[Any], **kwargs: Any) -> "_FakeChatModel":
        self.bound_tools = list(tools)
        self.bound_kwargs.update(kwargs)
        return self

    def bind(self, **kwargs: Any) -> "_FakeChatModel":
        self.bound_kwargs.update(kwargs)
        return self

    async def ainvoke(self, messages: list[Any]) -> Any:
        self.requests.append(list(messages))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def _openrouter(model: _FakeChatModel, generation: GenerationConfig | None = None) -> OpenRouterAdapter:
    tier = ProviderSettings().tier_table()[1]
    return OpenRouterAdapter(tier, generation, api_key="or-key", model_factory=lambda *_: model)


def _tool_call_reply() -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[{"name": "validatePNR", "args": {"pnr": "1234567890"}, "id": "call_1", "type": "tool_call"}],
    )


def test_openrouter_correlation_ids_round_trip() -> None:
    model = _FakeChatModel([_tool_call_reply(), AIMessage(content="Your PNR looks valid.")])
    adapter = _openrouter(model)
    history = [ConversationMessage.user("hi"), ConversationMessage.assistant("Hello! How can I help?")]

    async def _scenario() -> tuple[Any, Any]:
        first = await adapter.converse("system", history, ConversationMessage.user("check 1234567890"), [PNR_TOOL])
        results = [call.result({"valid": True}) for call in first.tool_calls]
        second = await adapter.continue_with_tool_results(results)
        return first, second

    first, second = asyncio.run(_scenario())

    assert first.tool_calls[0].correlation_id == "call_1"
    assert second.text == "Your PNR looks valid."
    assert model.bound_kwargs["tool_choice"] == "auto"

    request = model.requests[1]
    assert isinstance(request[0], SystemMessage)
    assert [type(message) for message in request[1:]] == [HumanMessage, AIMessage, HumanMessage, AIMessage, ToolMessage]
    assert request[-1].tool_call_id == "call_1"

    session_history = adapter.session.history
    assert [type(message) for message in session_history[2:]] == [HumanMessage, AIMessage, ToolMessage, AIMessage]


def test_openrouter_tool_translation_is_lowercase_and_memoised() -> None:
    adapter = _openrouter(_FakeChatModel([]))

    translated = adapter.translated_tools([PNR_TOOL])

    assert translated is adapter.translated_tools([PNR_TOOL])
    function = translated[0]["function"]
    assert translated[0]["type"] == "function"
    assert function["parameters"] == {
        "type": "object",
        "properties": {
            "pnr": {"type": "string", "description": "10 digits"},
            "kind": {"type": "string", "enum": ["a", "b"]},
        },
        "required": ["pnr"],
    }


def test_openrouter_json_mode_and_attachments() -> None:
    model = _FakeChatModel([AIMessage(content="{}")])
    adapter = _openrouter(model, GenerationConfig(json_mode=True))
    turn = ConversationMessage.user(
        "see photo",
        [Attachment(mime_type="image/png", data="aGVsbG8="), Attachment(mime_type="application/pdf", data="aGk=")],
    )

    asyncio.run(adapter.converse("system", [], turn))

    assert model.bound_kwargs["response_format"] == {"type": "json_object"}
    human = model.requests[0][1]
    assert human.content == [
        {"type": "text", "text": "see photo"},
        {"type": "image_url", "image_url": {"url": "data:image/png;base64,aGVsbG8="}},
    ]


def test_session_state_violations() -> None:
    model = _FakeChatModel([_tool_call_reply(), AIMessage(content="done"), AIMessage(content="plain")])
    adapter = _openrouter(model)

    with pytest.raises(SessionStateError):
        asyncio.run(adapter.continue_with_tool_results([]))

    async def _scenario() -> None:
        first = await adapter.converse("system", [], ConversationMessage.user("check"), [PNR_TOOL])
        with pytest.raises(SessionStateError):
            await adapter.continue_with_tool_results([ToolResult(name="validatePNR", correlation_id="bogus", payload={})])
        await adapter.continue_with_tool_results([first.tool_calls[0].result({"valid": True})])
        with pytest.raises(SessionStateError):
            await adapter.continue_with_tool_results([first.tool_calls[0].result({"valid": True})])

    asyncio.run(_scenario())


def test_failed_call_appends_nothing() -> None:
    model = _FakeChatModel([RuntimeError("connection reset")])
    adapter = _openrouter(model)
    history = [ConversationMessage.user("hi"), ConversationMessage.assistant("hello")]

    with pytest.raises(RuntimeError):
        asyncio.run(adapter.converse("system", history, ConversationMessage.user("again")))

    assert len(adapter.session.history) == 2


def test_missing_api_key_raises_classifiable_error() -> None:
    tier = ProviderSettings().tier_table()[1]

    with pytest.raises(ProviderError, match="api key"):
        OpenRouterAdapter(tier, api_key=None, model_factory=lambda *_: _FakeChatModel([]))


class _FakeModels:
    def __init__(self, responses: list[types.GenerateContentResponse]) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def generate_content(self, *, model: str, contents: list[Any], config: Any) -> types.GenerateContentResponse:
        self.calls.append({"model": model, "contents": list(contents), "config": config})
        return self.responses.pop(0)


class _FakeAio:
    def __init__(self, models: _FakeModels) -> None:
        self.models = models


class _FakeGenaiClient:
    def __init__(self, responses: list[types.GenerateContentResponse]) -> None:
        self.models = _FakeModels(responses)
        self.aio = _FakeAio(self.models)


def _model_response(*parts: types.Part) -> types.GenerateContentResponse:
    return types.GenerateContentResponse(
        candidates=[types.Candidate(content=types.Content(role="model", parts=list(parts)))]
    )


def _gemini(client: _FakeGenaiClient) -> GeminiAdapter:
    tier = ProviderSettings().tier_table()[0]
    return GeminiAdapter(tier, api_key="g-key", client_cache=CredentialClientCache(lambda key: client))


def test_gemini_function_call_round_trip() -> None:
    client = _FakeGenaiClient(
        [
            _model_response(
                types.Part(function_call=types.FunctionCall(id="fc-7", name="validatePNR", args={"pnr": "1234567890"}))
            ),
            _model_response(types.Part(text="PNR verified.")),
        ]
    )
    adapter = _gemini(client)

    async def _scenario() -> tuple[Any, Any]:
        first = await adapter.converse("system", [], ConversationMessage.user("check"), [PNR_TOOL])
        second = await adapter.continue_with_tool_results([first.tool_calls[0].result({"valid": True})])
        return first, second

    first, second = asyncio.run(_scenario())

    assert first.tool_calls[0].correlation_id == "fc-7"
    assert first.tool_calls[0].arguments == {"pnr": "1234567890"}
    assert second.text == "PNR verified."

    contents = client.models.calls[1]["contents"]
    assert [content.role for content in contents] == ["user", "model", "user"]
    response_part = contents[-1].parts[0].function_response
    assert response_part.id == "fc-7"
    assert response_part.response == {"valid": True}

    config = client.models.calls[0]["config"]
    assert config.max_output_tokens == 65536
    assert config.tools[0].function_declarations[0].name == "validatePNR"


def test_gemini_blocked_prompt_raises() -> None:
    blocked = types.GenerateContentResponse(
        prompt_feedback=types.GenerateContentResponsePromptFeedback(block_reason=types.BlockedReason.SAFETY)
    )
    adapter = _gemini(_FakeGenaiClient([blocked]))

    with pytest.raises(ProviderError, match="safety"):
        asyncio.run(adapter.converse("system", [], ConversationMessage.user("hello")))


def test_gemini_schema_is_uppercase() -> None:
    schema = to_gemini_schema(PNR_TOOL.parameter_schema)

    assert schema.type == types.Type.OBJECT
    assert schema.properties["pnr"].type == types.Type.STRING
    assert schema.properties["kind"].enum == ["a", "b"]
    assert schema.required == ["pnr"]


def test_openai_schema_drops_unknown_keys() -> None:
    assert to_openai_schema({"type": "STRING", "title": "x", "default": "y"}) == {"type": "string"}


def test_client_cache_swaps_on_new_credential() -> None:
    built: list[str] = []

    def _factory(key: str) -> str:
        built.append(key)
        return f"client-{key}"

    cache = CredentialClientCache(_factory)

    assert cache.get("a") == "client-a"
    assert cache.get("a") == "client-a"
    assert cache.get("b") == "client-b"
    assert built == ["a", "b"]
