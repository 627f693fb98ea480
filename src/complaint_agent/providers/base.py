"""Provider adapter and chat session contracts."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Sequence

from complaint_agent.config import GenerationConfig, TierConfig
from complaint_agent.errors import SessionStateError
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


class ChatSession(ABC):
    """One stateful conversation with a provider.

    `history` holds provider-native entries and grows only on success: a
    send appends the request entries followed by the assistant entry, a
    failed call appends nothing.
    """

    def __init__(
        self,
        *,
        system_instruction: str,
        history: list[Any],
        tools: list[Any],
        generation: GenerationConfig,
        tier: TierConfig,
    ) -> None:
        self.system_instruction = system_instruction
        self.history = history
        self.tools = tools
        self.generation = generation
        self.tier = tier
        self._pending_calls: list[ToolCallRequest] = []
        self._awaiting_results = False
        self._busy = False

    async def send(self, text: str, attachments: Sequence[Attachment] = ()) -> ProviderReply:
        return await self._exchange([self._user_entry(text, attachments)])

    async def send_tool_results(self, results: Sequence[ToolResult]) -> ProviderReply:
        if not self._awaiting_results:
            raise SessionStateError("send_tool_results requires a preceding send that returned tool calls")
        self._check_correlation(results)
        self._awaiting_results = False
        return await self._exchange(self._tool_result_entries(results))

    @property
    def pending_calls(self) -> list[ToolCallRequest]:
        return list(self._pending_calls)

    def _check_correlation(self, results: Sequence[ToolResult]) -> None:
        known = {call.correlation_id for call in self._pending_calls if call.correlation_id}
        for result in results:
            if result.correlation_id and result.correlation_id not in known:
                raise SessionStateError(f"Tool result {result.name!r} has unknown correlation id {result.correlation_id!r}")

    async def _exchange(self, entries: list[Any]) -> ProviderReply:
        if self._busy:
            raise SessionStateError("Chat session is already handling a request")
        self._busy = True
        try:
            reply, assistant_entry = await self._generate([*self.history, *entries])
        finally:
            self._busy = False
        self.history.extend(entries)
        self.history.append(assistant_entry)
        self._pending_calls = list(reply.tool_calls)
        self._awaiting_results = bool(reply.tool_calls)
        return reply

    @abstractmethod
    def _user_entry(self, text: str, attachments: Sequence[Attachment]) -> Any:
        """Provider-native user entry."""

    @abstractmethod
    def _tool_result_entries(self, results: Sequence[ToolResult]) -> list[Any]:
        """Provider-native entries carrying tool results."""

    @abstractmethod
    async def _generate(self, messages: list[Any]) -> tuple[ProviderReply, Any]:
        """Call the provider; return the reply and the assistant entry to record."""


class ProviderAdapter(ABC):
    """Uniform entry point for one provider at one tier."""

    provider_id: ProviderId

    def __init__(self, tier: TierConfig, generation: GenerationConfig | None = None) -> None:
        self.tier = tier
        self.generation = generation or GenerationConfig()
        self._session: ChatSession | None = None
        self._tool_cache: dict[tuple[str, ...], list[Any]] = {}

    @property
    def model_id(self) -> str:
        return self.tier.model_id

    async def converse(
        self,
        system_instruction: str,
        history: Sequence[ConversationMessage],
        user_turn: ConversationMessage,
        tools: Sequence[ToolDeclaration] | None = None,
    ) -> ProviderReply:
        """Open a fresh session seeded with `history` and send `user_turn`."""
        session = self._open_session(
            system_instruction=system_instruction,
            history=[self._history_entry(message) for message in history],
            tools=self.translated_tools(tools or []),
        )
        self._session = session
        logger.debug(
            "Sending turn to %s model=%s history=%d tools=%d",
            self.provider_id.value,
            self.model_id,
            len(history),
            len(tools or []),
        )
        return await session.send(user_turn.text, user_turn.attachments)

    async def continue_with_tool_results(self, results: Sequence[ToolResult]) -> ProviderReply:
        """Send tool results on the session that produced the calls."""
        if self._session is None:
            raise SessionStateError("No open session; call converse first")
        return await self._session.send_tool_results(results)

    @property
    def session(self) -> ChatSession | None:
        return self._session

    def translated_tools(self, tools: Sequence[ToolDeclaration]) -> list[Any]:
        if not tools:
            return []
        key = tuple(tool.name for tool in tools)
        cached = self._tool_cache.get(key)
        if cached is None:
            cached = [self._translate_tool(tool) for tool in tools]
            self._tool_cache[key] = cached
        return cached

    @abstractmethod
    def _translate_tool(self, tool: ToolDeclaration) -> Any:
        """Provider dialect of one tool declaration."""

    @abstractmethod
    def _history_entry(self, message: ConversationMessage) -> Any:
        """Provider-native form of a caller history turn."""

    @abstractmethod
    def _open_session(self, *, system_instruction: str, history: list[Any], tools: list[Any]) -> ChatSession:
        """Build a session bound to this adapter's client and tier."""
