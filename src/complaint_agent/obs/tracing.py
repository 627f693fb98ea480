"""Tracing and cost accounting for chat turns."""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from complaint_agent.types import TierEscalation, ToolTrace

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    message: str
    reply: str
    emergency_state: str
    provider: str | None
    model: str | None
    tier: int | None
    escalations: list[TierEscalation]
    tool_traces: list[ToolTrace]
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    latency_ms: float
    degraded: bool = False
    function_calls: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CostModel:
    """Simple token pricing model (USD per 1K tokens)."""

    input_per_1k: float = 0.0003
    output_per_1k: float = 0.0025

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens / 1000.0) * self.input_per_1k + (
            output_tokens / 1000.0
        ) * self.output_per_1k


class TraceStore:
    """In-memory trace storage for API-level observability.

    Keeps at most `max_records` traces; the oldest are dropped first.
    """

    def __init__(self, *, cost_model: CostModel | None = None, max_records: int = 1000) -> None:
        if max_records < 1:
            raise ValueError("max_records must be at least 1")
        self._records: dict[str, TraceRecord] = {}
        self._max_records = max_records
        self._cost_model = cost_model or CostModel()

    def create_record(
        self,
        *,
        message: str,
        reply: str,
        emergency_state: str,
        provider: str | None,
        model: str | None,
        tier: int | None,
        escalations: list[TierEscalation],
        tool_traces: list[ToolTrace],
        input_tokens: int,
        output_tokens: int,
        latency_ms: float,
        degraded: bool = False,
        function_calls: list[str] | None = None,
    ) -> TraceRecord:
        trace_id = str(uuid.uuid4())
        record = TraceRecord(
            trace_id=trace_id,
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            message=message,
            reply=reply,
            emergency_state=emergency_state,
            provider=provider,
            model=model,
            tier=tier,
            escalations=escalations,
            tool_traces=tool_traces,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=self._cost_model.estimate_cost(input_tokens, output_tokens),
            latency_ms=latency_ms,
            degraded=degraded,
            function_calls=list(function_calls or []),
        )
        self._records[trace_id] = record
        while len(self._records) > self._max_records:
            self._records.pop(next(iter(self._records)))
        return record

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        return list(self._records.values())[-limit:]

    def __len__(self) -> int:
        return len(self._records)

    def summary(self) -> dict[str, float | int]:
        """Aggregate core observability metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "total_escalations": 0,
                "degraded_responses": 0,
                "emergency_turns": 0,
                "total_input_tokens": 0,
                "total_output_tokens": 0,
                "total_estimated_cost_usd": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        total_in = sum(record.input_tokens for record in records)
        total_out = sum(record.output_tokens for record in records)
        total_cost = sum(record.estimated_cost_usd for record in records)
        avg_latency = sum(latencies) / total

        return {
            "total_requests": total,
            "avg_latency_ms": avg_latency,
            "p95_latency_ms": latencies[p95_index],
            "total_escalations": sum(len(record.escalations) for record in records),
            "degraded_responses": sum(1 for record in records if record.degraded),
            "emergency_turns": sum(1 for record in records if record.emergency_state != "normal"),
            "total_input_tokens": total_in,
            "total_output_tokens": total_out,
            "total_estimated_cost_usd": total_cost,
        }


class Timer:
    """Simple context timer used by the orchestrator."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
