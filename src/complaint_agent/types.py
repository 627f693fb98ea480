"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

Role = Literal["user", "assistant"]


class ProviderId(str, Enum):
    """Backends an adapter can be built for."""

    GEMINI = "gemini"
    OPENROUTER = "openrouter"


@dataclass(slots=True, frozen=True)
class Attachment:
    """Binary payload sent alongside a user turn, base64-encoded."""

    mime_type: str
    data: str

    @property
    def is_image(self) -> bool:
        return self.mime_type.lower().startswith("image/")

    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


@dataclass(slots=True)
class ConversationMessage:
    """One caller-visible turn of a conversation."""

    role: Role
    text: str
    attachments: list[Attachment] = field(default_factory=list)

    @classmethod
    def user(cls, text: str, attachments: list[Attachment] | None = None) -> "ConversationMessage":
        return cls(role="user", text=text, attachments=list(attachments or []))

    @classmethod
    def assistant(cls, text: str) -> "ConversationMessage":
        return cls(role="assistant", text=text)


@dataclass(slots=True)
class ToolDeclaration:
    """Provider-agnostic function signature advertised to the model."""

    name: str
    description: str
    parameter_schema: dict[str, Any]


@dataclass(slots=True)
class ToolResult:
    """Output of an executed tool call, sent back to the model."""

    name: str
    correlation_id: str
    payload: Any


@dataclass(slots=True)
class ToolCallRequest:
    """A structured function call requested by the model.

    `correlation_id` is empty for providers that do not issue call ids.
    """

    name: str
    arguments: dict[str, Any]
    correlation_id: str = ""

    def result(self, payload: Any) -> ToolResult:
        return ToolResult(name=self.name, correlation_id=self.correlation_id, payload=payload)


@dataclass(slots=True)
class ProviderReply:
    """Text and/or tool calls returned by one model round trip."""

    text: str
    tool_calls: list[ToolCallRequest] = field(default_factory=list)


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float


@dataclass(slots=True)
class TierEscalation:
    """Emitted each time the fallback controller moves to a higher tier."""

    from_tier: int
    to_tier: int
    kind: str
    reason: str
