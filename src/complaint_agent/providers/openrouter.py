"""OpenRouter adapter over its OpenAI-compatible API via LangChain ChatOpenAI."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_openai import ChatOpenAI

from complaint_agent.config import GenerationConfig, ProviderSettings, TierConfig
from complaint_agent.errors import ProviderError
from complaint_agent.providers.base import ChatSession, ProviderAdapter
from complaint_agent.types import (
    Attachment,
    ConversationMessage,
    ProviderId,
    ProviderReply,
    ToolCallRequest,
    ToolDeclaration,
    ToolResult,
)

logger = logging.getLogger(__name__)

ChatModelFactory = Callable[[TierConfig, GenerationConfig, str], BaseChatModel]

_SCHEMA_KEYS = ("description", "enum", "properties", "items", "required")


def to_openai_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Normalise a JSON-schema subset to the lower-case OpenAI dialect."""
    converted: dict[str, Any] = {}
    raw_type = schema.get("type")
    if isinstance(raw_type, str):
        converted["type"] = raw_type.lower()
    for key in _SCHEMA_KEYS:
        if key not in schema:
            continue
        value = schema[key]
        if key == "properties":
            converted["properties"] = {name: to_openai_schema(sub) for name, sub in value.items()}
        elif key == "items":
            converted["items"] = to_openai_schema(value)
        else:
            converted[key] = list(value) if isinstance(value, (list, tuple)) else value
    return converted


def chat_model_factory(settings: ProviderSettings) -> ChatModelFactory:
    """Factory producing ChatOpenAI clients pointed at OpenRouter."""

    def _build(tier: TierConfig, generation: GenerationConfig, api_key: str) -> BaseChatModel:
        return ChatOpenAI(
            model=tier.model_id,
            api_key=api_key,
            base_url=settings.openrouter_base_url,
            temperature=generation.temperature,
            top_p=generation.top_p,
            max_tokens=tier.max_output_tokens,
            max_retries=0,
            timeout=settings.request_timeout_seconds,
            default_headers={"HTTP-Referer": settings.app_referer, "X-Title": settings.app_title},
        )

    return _build


def _human_message(text: str, attachments: Sequence[Attachment]) -> HumanMessage:
    if not attachments:
        return HumanMessage(content=text)
    content: list[str | dict[str, Any]] = [{"type": "text", "text": text}]
    for attachment in attachments:
        if not attachment.is_image:
            logger.warning("Dropping non-image attachment (%s) for OpenRouter request", attachment.mime_type)
            continue
        content.append({"type": "image_url", "image_url": {"url": attachment.data_uri()}})
    if len(content) == 1:
        return HumanMessage(content=text)
    return HumanMessage(content=content)


def _message_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content.strip()
    chunks: list[str] = []
    for block in content:
        if isinstance(block, str):
            chunks.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            chunks.append(str(block.get("text", "")))
    return "".join(chunks).strip()


class OpenRouterChatSession(ChatSession):
    def __init__(self, model: BaseChatModel, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._model = model

    def _user_entry(self, text: str, attachments: Sequence[Attachment]) -> HumanMessage:
        return _human_message(text, attachments)

    def _tool_result_entries(self, results: Sequence[ToolResult]) -> list[ToolMessage]:
        return [
            ToolMessage(
                content=json.dumps(result.payload, ensure_ascii=False, default=str),
                tool_call_id=result.correlation_id or result.name,
                name=result.name,
            )
            for result in results
        ]

    def _runnable(self) -> Any:
        runnable: Any = self._model
        if self.tools:
            runnable = runnable.bind_tools(self.tools, tool_choice="auto")
        if self.generation.json_mode:
            runnable = runnable.bind(response_format={"type": "json_object"})
        return runnable

    async def _generate(self, messages: list[BaseMessage]) -> tuple[ProviderReply, AIMessage]:
        request = [SystemMessage(content=self.system_instruction), *messages]
        response = await self._runnable().ainvoke(request)
        if not isinstance(response, AIMessage):
            raise ProviderError(f"Unexpected OpenRouter response type: {type(response).__name__}")

        for invalid in response.invalid_tool_calls:
            logger.warning("Ignoring malformed tool call from %s: %s", self.tier.model_id, invalid.get("error"))
        tool_calls = [
            ToolCallRequest(name=call["name"], arguments=dict(call.get("args") or {}), correlation_id=call.get("id") or "")
            for call in response.tool_calls
        ]
        return ProviderReply(text=_message_text(response), tool_calls=tool_calls), response


class OpenRouterAdapter(ProviderAdapter):
    provider_id = ProviderId.OPENROUTER

    def __init__(
        self,
        tier: TierConfig,
        generation: GenerationConfig | None = None,
        *,
        api_key: str | None,
        model_factory: ChatModelFactory | None = None,
    ) -> None:
        super().__init__(tier, generation)
        if not api_key:
            raise ProviderError("OpenRouter api key not configured", status_code=401)
        factory = model_factory or chat_model_factory(ProviderSettings())
        self._model = factory(tier, self.generation, api_key)

    def _translate_tool(self, tool: ToolDeclaration) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": to_openai_schema(tool.parameter_schema),
            },
        }

    def _history_entry(self, message: ConversationMessage) -> BaseMessage:
        if message.role == "assistant":
            return AIMessage(content=message.text)
        return _human_message(message.text, message.attachments)

    def _open_session(self, *, system_instruction: str, history: list[Any], tools: list[Any]) -> OpenRouterChatSession:
        return OpenRouterChatSession(
            self._model,
            system_instruction=system_instruction,
            history=history,
            tools=tools,
            generation=self.generation,
            tier=self.tier,
        )
