"""Chat orchestration: emergency gate, tiered completion and tool execution."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from complaint_agent.agent.emergency import (
    EmergencyAssessment,
    EmergencyState,
    assess_emergency,
    build_emergency_response,
    build_preparation_message,
    sanitize_preparation,
)
from complaint_agent.agent.fallback import TieredFallbackController
from complaint_agent.agent.function_calls import (
    extract_function_call,
    scrub_function_call_residue,
    strip_function_call,
)
from complaint_agent.agent.registry import ToolRegistry
from complaint_agent.agent.tools import KnownValuesValidator, ReferenceValidator, validate_pnr
from complaint_agent.config import EmergencyConfig, TierConfig
from complaint_agent.errors import AllProvidersExhaustedError
from complaint_agent.obs.tracing import Timer, TraceStore, estimate_token_count
from complaint_agent.providers.base import ProviderAdapter
from complaint_agent.types import (
    Attachment,
    ConversationMessage,
    ProviderReply,
    TierEscalation,
    ToolResult,
    ToolTrace,
)

logger = logging.getLogger(__name__)

ToolObserver = Callable[[ToolTrace], None]

DEFAULT_SYSTEM_PROMPT = """
You are the RailMadad assistant for Indian Railways passengers. Help passengers
register complaints quickly and accurately, and treat every complaint as urgent.

Rules:
1) Collect the issue, location (train, coach, berth, station or platform) and time.
   Assume "just now" when no time is given.
2) Use the available tools to validate PNR, UTS, train numbers and station codes.
3) Never invent a complaint reference number; submit with `submitComplaint` and
   let the system report the reference.
4) If tools are unavailable, call them as text on their own line:
   FUNCTION_CALL: functionName({"param": "value"})
5) Never show code or internal reasoning. Reply in the passenger's language.
""".strip()

EMERGENCY_SYSTEM_PROMPT = """
The passenger is reporting a possible emergency on Indian Railways.

Write a short, calm reply that:
1) Acknowledges that this is a serious issue that will be reported immediately.
2) Summarises what you have as bullet points: Issue, Location, Time, Reference.
3) Asks for any missing location detail (train, coach, station).
4) Ends with: Please reply 'CONFIRM' to submit this report to the Railway
   Protection Force (RPF) immediately.

Do not list any phone numbers or helpline numbers yet. Do not call any functions.
""".strip()

DEGRADED_REPLY = (
    "I'm having trouble reaching the assistant right now. Your message has not been "
    "lost; please try again in a minute, or register your issue through the complaint "
    "form in the meantime."
)

EMPTY_REPLY = "I'm sorry, I couldn't put together a response. Could you rephrase your message?"

_PNR_IN_TEXT = re.compile(r"(?<!\d)(\d{10})(?!\d)")
_TRAIN_IN_TEXT = re.compile(r"(?<!\d)(\d{5})(?!\d)")
_STATION_IN_TEXT = re.compile(r"\b([A-Z]{2,5})\b")


@dataclass(slots=True)
class ChatResult:
    reply: str
    trace_id: str
    emergency_state: EmergencyState
    tier: int | None = None
    degraded: bool = False
    function_calls: list[str] = field(default_factory=list)


@dataclass(slots=True)
class _Turn:
    reply: str
    tier: TierConfig | None = None
    escalations: list[TierEscalation] = field(default_factory=list)
    degraded: bool = False
    function_calls: list[str] = field(default_factory=list)


class ChatOrchestrator:
    """Entry point for one conversational turn.

    Emergencies are decided before any model call. Everything else goes through
    the tiered fallback controller; tool calls may arrive natively or embedded
    in the reply text.
    """

    def __init__(
        self,
        *,
        controller: TieredFallbackController,
        tool_registry: ToolRegistry,
        trace_store: TraceStore,
        emergency_config: EmergencyConfig | None = None,
        validator: ReferenceValidator | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self.controller = controller
        self.tool_registry = tool_registry
        self.trace_store = trace_store
        self.emergency_config = emergency_config or EmergencyConfig()
        self.validator = validator or KnownValuesValidator()
        self.system_prompt = system_prompt

    async def chat(
        self,
        message: str,
        history: Sequence[ConversationMessage] = (),
        context: dict[str, Any] | None = None,
        system_prompt_override: str | None = None,
        attachments: Sequence[Attachment] | None = None,
    ) -> str:
        """Reply text for `message`. Raises `AllProvidersExhaustedError` when every tier fails."""
        result = await self._run(
            message,
            history,
            context=context,
            system_prompt_override=system_prompt_override,
            attachments=attachments,
            degrade=False,
        )
        return result.reply

    async def respond(
        self,
        message: str,
        history: Sequence[ConversationMessage] = (),
        context: dict[str, Any] | None = None,
        system_prompt_override: str | None = None,
        attachments: Sequence[Attachment] | None = None,
    ) -> ChatResult:
        """Like `chat`, but an exhausted budget yields a degraded reply instead of raising."""
        return await self._run(
            message,
            history,
            context=context,
            system_prompt_override=system_prompt_override,
            attachments=attachments,
            degrade=True,
        )

    async def _run(
        self,
        message: str,
        history: Sequence[ConversationMessage],
        *,
        context: dict[str, Any] | None,
        system_prompt_override: str | None,
        attachments: Sequence[Attachment] | None,
        degrade: bool,
    ) -> ChatResult:
        history = list(history)
        observed: list[ToolTrace] = []

        with Timer() as timer:
            assessment = assess_emergency(message, history, self.emergency_config)
            if assessment.state is EmergencyState.CONFIRMED:
                logger.warning("Emergency confirmed (%s)", assessment.emergency_type)
                turn = _Turn(reply=build_emergency_response(assessment.emergency_type))
            elif assessment.short_circuits:
                logger.warning("Emergency %s (%s)", assessment.state.value, assessment.emergency_type)
                turn = await self._prepare_emergency(message, history, assessment)
            else:
                try:
                    turn = await self._converse(
                        message,
                        history,
                        context=context,
                        system_prompt_override=system_prompt_override,
                        attachments=attachments,
                        observer=observed.append,
                    )
                except AllProvidersExhaustedError:
                    if not degrade:
                        raise
                    turn = _Turn(reply=DEGRADED_REPLY, degraded=True)

        record = self.trace_store.create_record(
            message=message,
            reply=turn.reply,
            emergency_state=assessment.state.value,
            provider=turn.tier.provider_id.value if turn.tier else None,
            model=turn.tier.model_id if turn.tier else None,
            tier=turn.tier.tier if turn.tier else None,
            escalations=turn.escalations,
            tool_traces=observed,
            input_tokens=estimate_token_count(message),
            output_tokens=estimate_token_count(turn.reply),
            latency_ms=timer.elapsed_ms,
            degraded=turn.degraded,
            function_calls=turn.function_calls,
        )
        return ChatResult(
            reply=turn.reply,
            trace_id=record.trace_id,
            emergency_state=assessment.state,
            tier=turn.tier.tier if turn.tier else None,
            degraded=turn.degraded,
            function_calls=turn.function_calls,
        )

    async def _prepare_emergency(
        self,
        message: str,
        history: list[ConversationMessage],
        assessment: EmergencyAssessment,
    ) -> _Turn:
        prompt = f"{EMERGENCY_SYSTEM_PROMPT}\n\nDetected emergency type: {assessment.emergency_type}"
        user_turn = ConversationMessage.user(message)

        async def _operation(adapter: ProviderAdapter, tier: TierConfig) -> str:
            reply = await adapter.converse(prompt, history, user_turn)
            return reply.text

        try:
            outcome = await self.controller.run(_operation)
        except Exception:
            logger.warning("Emergency preparation fell back to the template", exc_info=True)
            return _Turn(reply=build_preparation_message(assessment.subject, assessment.emergency_type))
        return _Turn(
            reply=sanitize_preparation(outcome.value, assessment, self.emergency_config),
            tier=outcome.tier,
            escalations=outcome.escalations,
        )

    async def _converse(
        self,
        message: str,
        history: list[ConversationMessage],
        *,
        context: dict[str, Any] | None,
        system_prompt_override: str | None,
        attachments: Sequence[Attachment] | None,
        observer: ToolObserver,
    ) -> _Turn:
        system_instruction = self.build_system_prompt(message, context, system_prompt_override)
        declarations = self.tool_registry.declarations()
        user_turn = ConversationMessage.user(message, list(attachments or []))
        function_calls: list[str] = []

        async def _operation(adapter: ProviderAdapter, tier: TierConfig) -> str:
            function_calls.clear()
            reply = await adapter.converse(system_instruction, history, user_turn, declarations)
            if reply.tool_calls:
                return await self._resolve_tool_calls(adapter, reply, function_calls, observer)
            return reply.text

        outcome = await self.controller.run(_operation)
        text = outcome.value

        embedded = extract_function_call(text)
        if embedded is not None:
            payload = self._execute_tool(embedded.function_name, embedded.arguments, observer)
            function_calls.append(embedded.function_name)
            narration = scrub_function_call_residue(strip_function_call(text, embedded))
            summary = _result_summary(embedded.function_name, payload)
            if not narration:
                text = summary or format_function_result(embedded.function_name, payload)
            else:
                text = f"{narration}\n\n{summary}" if summary else narration
        else:
            text = scrub_function_call_residue(text)

        return _Turn(
            reply=text or EMPTY_REPLY,
            tier=outcome.tier,
            escalations=outcome.escalations,
            function_calls=list(function_calls),
        )

    async def _resolve_tool_calls(
        self,
        adapter: ProviderAdapter,
        reply: ProviderReply,
        function_calls: list[str],
        observer: ToolObserver,
    ) -> str:
        results: list[ToolResult] = []
        for call in reply.tool_calls:
            function_calls.append(call.name)
            results.append(call.result(self._execute_tool(call.name, call.arguments, observer)))

        try:
            follow_up = await adapter.continue_with_tool_results(results)
        except Exception:
            logger.warning("Tool result follow-up failed; using first reply", exc_info=True)
            return reply.text or _narrate_results(results)

        if follow_up.tool_calls:
            logger.info("Ignoring %d chained tool call(s)", len(follow_up.tool_calls))
        return follow_up.text or reply.text or _narrate_results(results)

    def _execute_tool(self, name: str, arguments: dict[str, Any], observer: ToolObserver) -> dict[str, Any]:
        try:
            return self.tool_registry.execute(name, arguments, observer=observer)
        except KeyError:
            logger.warning("Model requested unknown function %s", name)
            return {"error": f"Unknown function: {name}"}
        except Exception as exc:
            logger.warning("Function %s failed", name, exc_info=True)
            return {"error": f"Error executing {name}: {exc}"}

    def build_system_prompt(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        system_prompt_override: str | None = None,
    ) -> str:
        now = datetime.now(timezone.utc)
        sections = [
            system_prompt_override or self.system_prompt,
            f"Current date and time: {now:%Y-%m-%d %H:%M} UTC",
        ]
        if context:
            lines = [f"- {key}: {value}" for key, value in context.items() if value not in (None, "", [], {})]
            if lines:
                sections.append("Passenger context:\n" + "\n".join(lines))
        validation = self.pre_validate(message)
        if validation:
            sections.append("Validation Results:\n" + "\n".join(validation))
        return "\n\n".join(sections)

    def pre_validate(self, message: str) -> list[str]:
        """Check identifiers found in the message before the model sees it."""
        lines: list[str] = []
        for pnr in dict.fromkeys(_PNR_IN_TEXT.findall(message)):
            lines.append(f"- PNR {pnr}: {validate_pnr(pnr)['message']}")
        for number in dict.fromkeys(_TRAIN_IN_TEXT.findall(message)):
            outcome = self.validator.validate("train", number)
            lines.append(f"- Train {number}: {outcome.message}")
        for code in dict.fromkeys(_STATION_IN_TEXT.findall(message)):
            outcome = self.validator.validate("station", code)
            if outcome.valid:
                lines.append(f"- Station {code}: {outcome.message}")
        return lines


def format_function_result(function_name: str, payload: dict[str, Any]) -> str:
    if "error" in payload:
        return f"I couldn't complete that request: {payload['error']}"
    message = payload.get("message") or payload.get("text") or payload.get("summary")
    if not message:
        message = json.dumps(payload, ensure_ascii=False, default=str)
    return f"The function {function_name} was executed successfully: {message}"


def _result_summary(function_name: str, payload: dict[str, Any]) -> str | None:
    if function_name == "submitComplaint" and payload.get("submitted"):
        return f"Your complaint has been registered. Reference number: {payload['reference']}"
    if function_name == "getComplaintStatus":
        if not payload.get("found"):
            return payload.get("message")
        return "\n".join(
            f"Complaint {item['reference']}: {item['status']}" for item in payload.get("complaints", [])
        )
    if function_name == "triggerEmergency":
        return payload.get("summary")
    return None


def _narrate_results(results: Sequence[ToolResult]) -> str:
    lines: list[str] = []
    for result in results:
        payload = result.payload if isinstance(result.payload, dict) else {"result": result.payload}
        lines.append(_result_summary(result.name, payload) or format_function_result(result.name, payload))
    return "\n".join(lines)
