"""Native Gemini adapter on the google-genai SDK."""

from __future__ import annotations

import base64
import logging
from typing import Any, Sequence

from google import genai
from google.genai import types

from complaint_agent.config import GenerationConfig, TierConfig
from complaint_agent.errors import ProviderError
from complaint_agent.providers.base import ChatSession, ProviderAdapter
from complaint_agent.providers.clients import CredentialClientCache
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

_SCHEMA_KEYS = ("description", "enum", "properties", "items", "required")


def new_gemini_client(api_key: str) -> genai.Client:
    return genai.Client(api_key=api_key)


def to_gemini_schema(schema: dict[str, Any]) -> types.Schema:
    """JSON-schema subset to `types.Schema`; unsupported keys are dropped."""
    kwargs: dict[str, Any] = {}
    raw_type = schema.get("type")
    if isinstance(raw_type, str):
        kwargs["type"] = types.Type(raw_type.upper())
    for key in _SCHEMA_KEYS:
        if key not in schema:
            continue
        value = schema[key]
        if key == "properties":
            kwargs["properties"] = {name: to_gemini_schema(sub) for name, sub in value.items()}
        elif key == "items":
            kwargs["items"] = to_gemini_schema(value)
        elif key == "enum":
            kwargs["enum"] = [str(item) for item in value]
        else:
            kwargs[key] = value
    return types.Schema(**kwargs)


def _user_content(text: str, attachments: Sequence[Attachment] = ()) -> types.Content:
    parts: list[types.Part] = []
    for attachment in attachments:
        parts.append(types.Part.from_bytes(data=base64.b64decode(attachment.data), mime_type=attachment.mime_type))
    parts.append(types.Part(text=text))
    return types.Content(role="user", parts=parts)


def _reply_text(content: types.Content | None) -> str:
    if content is None or not content.parts:
        return ""
    chunks = [part.text for part in content.parts if part.text and not part.thought]
    return "".join(chunks).strip()


class GeminiChatSession(ChatSession):
    def __init__(self, client: genai.Client, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._client = client

    def _user_entry(self, text: str, attachments: Sequence[Attachment]) -> types.Content:
        return _user_content(text, attachments)

    def _tool_result_entries(self, results: Sequence[ToolResult]) -> list[types.Content]:
        parts = [
            types.Part(
                function_response=types.FunctionResponse(
                    id=result.correlation_id or None,
                    name=result.name,
                    response=result.payload if isinstance(result.payload, dict) else {"result": result.payload},
                )
            )
            for result in results
        ]
        return [types.Content(role="user", parts=parts)]

    def _config(self) -> types.GenerateContentConfig:
        kwargs: dict[str, Any] = {
            "system_instruction": self.system_instruction,
            "temperature": self.generation.temperature,
            "top_p": self.generation.top_p,
            "max_output_tokens": self.tier.max_output_tokens,
        }
        if self.tools:
            kwargs["tools"] = [types.Tool(function_declarations=list(self.tools))]
        if self.generation.json_mode:
            kwargs["response_mime_type"] = "application/json"
        return types.GenerateContentConfig(**kwargs)

    async def _generate(self, messages: list[types.Content]) -> tuple[ProviderReply, types.Content]:
        response = await self._client.aio.models.generate_content(
            model=self.tier.model_id,
            contents=messages,
            config=self._config(),
        )
        feedback = response.prompt_feedback
        if feedback is not None and feedback.block_reason:
            raise ProviderError(f"Gemini prompt blocked by safety filter: {feedback.block_reason}", status_code=400)

        candidate = response.candidates[0] if response.candidates else None
        content = candidate.content if candidate is not None else None
        tool_calls = [
            ToolCallRequest(name=call.name or "", arguments=dict(call.args or {}), correlation_id=call.id or "")
            for call in (response.function_calls or [])
        ]
        text = _reply_text(content)
        if content is None:
            content = types.Content(role="model", parts=[types.Part(text=text)])
        return ProviderReply(text=text, tool_calls=tool_calls), content


class GeminiAdapter(ProviderAdapter):
    provider_id = ProviderId.GEMINI

    def __init__(
        self,
        tier: TierConfig,
        generation: GenerationConfig | None = None,
        *,
        api_key: str | None,
        client_cache: CredentialClientCache[genai.Client] | None = None,
    ) -> None:
        super().__init__(tier, generation)
        if not api_key:
            raise ProviderError("Gemini api key not configured", status_code=401)
        cache = client_cache or CredentialClientCache(new_gemini_client)
        self._client = cache.get(api_key)

    def _translate_tool(self, tool: ToolDeclaration) -> types.FunctionDeclaration:
        return types.FunctionDeclaration(
            name=tool.name,
            description=tool.description,
            parameters=to_gemini_schema(tool.parameter_schema),
        )

    def _history_entry(self, message: ConversationMessage) -> types.Content:
        if message.role == "assistant":
            return types.Content(role="model", parts=[types.Part(text=message.text)])
        return _user_content(message.text, message.attachments)

    def _open_session(self, *, system_instruction: str, history: list[Any], tools: list[Any]) -> GeminiChatSession:
        return GeminiChatSession(
            self._client,
            system_instruction=system_instruction,
            history=history,
            tools=tools,
            generation=self.generation,
            tier=self.tier,
        )
