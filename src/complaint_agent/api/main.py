"""FastAPI entrypoint for chat/trace endpoints."""

from __future__ import annotations

import os
from dataclasses import asdict
from typing import Any, Literal

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from complaint_agent.agent.analysis import ComplaintAnalyzer
from complaint_agent.agent.fallback import TieredFallbackController
from complaint_agent.agent.orchestrator import ChatOrchestrator
from complaint_agent.agent.registry import ToolRegistry
from complaint_agent.agent.tools import KnownValuesValidator, SqliteComplaintStore, register_builtin_tools
from complaint_agent.config import EmergencyConfig, FallbackConfig, GenerationConfig, ProviderSettings
from complaint_agent.errors import AllProvidersExhaustedError
from complaint_agent.obs.tracing import TraceStore
from complaint_agent.providers.clients import CredentialClientCache
from complaint_agent.providers.gemini import new_gemini_client
from complaint_agent.providers.registry import build_default_registry
from complaint_agent.types import Attachment, ConversationMessage


class AttachmentPayload(BaseModel):
    mime_type: str = Field(min_length=1)
    data: str = Field(min_length=1)


class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    text: str


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    history: list[HistoryTurn] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)
    system_prompt_override: str | None = None
    attachments: list[AttachmentPayload] = Field(default_factory=list)


class ExtractRequest(BaseModel):
    text: str = Field(min_length=1)


app = FastAPI(title="RailMadad Complaint Assistant", version="0.1.0")

_settings = ProviderSettings.from_env()
_validator = KnownValuesValidator()
_store = SqliteComplaintStore(os.getenv("COMPLAINT_DB_PATH", "complaints.db"))
_registry = ToolRegistry()
register_builtin_tools(_registry, store=_store, validator=_validator)

_trace_store = TraceStore(max_records=int(os.getenv("TRACE_MAX_RECORDS", "1000")))
_gemini_clients = CredentialClientCache(new_gemini_client)
_controller = TieredFallbackController(
    build_default_registry(_settings, GenerationConfig(), gemini_clients=_gemini_clients),
    _settings.tier_table(),
    FallbackConfig(),
)
_analyzer = ComplaintAnalyzer(
    TieredFallbackController(
        build_default_registry(_settings, GenerationConfig(json_mode=True), gemini_clients=_gemini_clients),
        _settings.tier_table(),
        FallbackConfig(),
    )
)
_orchestrator = ChatOrchestrator(
    controller=_controller,
    tool_registry=_registry,
    trace_store=_trace_store,
    emergency_config=EmergencyConfig(),
    validator=_validator,
)


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "configured_providers": [provider.value for provider in _settings.configured_providers()],
        "tiers": [
            {"tier": tier.tier, "provider": tier.provider_id.value, "model": tier.model_id}
            for tier in _controller.tiers
        ],
        "tools": [spec.name for spec in _registry.specs()],
        "trace_count": len(_trace_store),
    }


@app.post("/chat")
async def chat(request: ChatRequest) -> dict[str, Any]:
    history = [ConversationMessage(role=turn.role, text=turn.text) for turn in request.history]
    attachments = [Attachment(mime_type=item.mime_type, data=item.data) for item in request.attachments]
    try:
        result = await _orchestrator.respond(
            request.message,
            history,
            context=request.context or None,
            system_prompt_override=request.system_prompt_override,
            attachments=attachments,
        )
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return {
        "reply": result.reply,
        "trace_id": result.trace_id,
        "emergency_state": result.emergency_state.value,
        "tier": result.tier,
        "degraded": result.degraded,
        "function_calls": result.function_calls,
    }


@app.post("/complaints/extract")
async def extract_complaint(request: ExtractRequest) -> dict[str, Any]:
    try:
        extracted = await _analyzer.extract_details(request.text)
    except AllProvidersExhaustedError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return extracted.model_dump(by_alias=True, exclude_none=True)


@app.post("/complaints/{reference}/analysis")
async def analyze_complaint(reference: str) -> dict[str, Any]:
    complaint = next((item for item in _store.get_complaints() if item.reference == reference.upper()), None)
    if complaint is None:
        raise HTTPException(status_code=404, detail=f"Unknown complaint: {reference}")
    try:
        analysis = await _analyzer.analyze(complaint)
    except AllProvidersExhaustedError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"reference": complaint.reference, **analysis.model_dump(by_alias=True)}


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
