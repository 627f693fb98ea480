"""Structured complaint analysis and detail extraction over JSON-mode providers.

Both operations run a single prompt through the tiered fallback controller,
so a rate-limited tier escalates exactly like a chat turn. The controller must
be built on a registry whose adapters have `GenerationConfig.json_mode` set.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from complaint_agent.agent.fallback import TieredFallbackController
from complaint_agent.agent.tools import Complaint
from complaint_agent.config import TierConfig
from complaint_agent.providers.base import ProviderAdapter
from complaint_agent.types import ConversationMessage

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

DEPARTMENTS: tuple[str, ...] = (
    "Operations",
    "Maintenance",
    "Customer Service",
    "Security",
    "Medical",
    "Catering",
    "Electrical",
    "Cleaning",
    "Ticketing",
    "Management",
)

ANALYSIS_INSTRUCTION = """
You are an AI assistant for a railway complaint system. Analyse the complaint and
answer with a single JSON object with the keys category, urgencyScore, summary,
keywords and suggestedDepartment.

The passenger has already chosen a complaint type; treat it as a strong hint but
correct it when the description clearly points elsewhere.

urgencyScore is an integer from 1 to 10:
  1-3: minor inconvenience (cleanliness, wifi)
  4-6: service failure or delay (AC not working, late train)
  7-8: health risk or significant distress (no water, pests)
  9-10: critical safety or emergency (medical, harassment, accident)

suggestedDepartment is one of: {departments}.
""".strip()

EXTRACTION_INSTRUCTION = """
You extract railway complaint details from a passenger's text. Answer with a
single JSON object using only these keys, omitting anything not stated:
pnr (10 digits), utsNumber, journeyDate (YYYY-MM-DD), incidentDate (YYYY-MM-DD),
incidentTime (HH:mm), complaintArea ("TRAIN" or "STATION"), complaintType,
complaintSubType, description, trainNumber, coachNumber, seatNumber,
nearestStation, platformNumber.

Coaches are labelled like S1, B2, A1; berths are Lower, Middle, Upper, Side Lower
and Side Upper. Never guess a PNR or train number that is not in the text.
""".strip()

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", flags=re.IGNORECASE)


class ComplaintAnalysis(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category: str = "Other"
    urgency_score: int = Field(default=3, alias="urgencyScore", ge=1, le=10)
    summary: str = "Analysis could not generate a summary."
    keywords: list[str] = Field(default_factory=list)
    suggested_department: str = Field(default="Customer Service", alias="suggestedDepartment")

    @field_validator("urgency_score", mode="before")
    @classmethod
    def _clamp_urgency(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return min(10, max(1, int(value)))
        return value


class ExtractedComplaint(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pnr: str | None = None
    uts_number: str | None = Field(default=None, alias="utsNumber")
    journey_date: str | None = Field(default=None, alias="journeyDate")
    incident_date: str | None = Field(default=None, alias="incidentDate")
    incident_time: str | None = Field(default=None, alias="incidentTime")
    complaint_area: Literal["TRAIN", "STATION"] | None = Field(default=None, alias="complaintArea")
    complaint_type: str | None = Field(default=None, alias="complaintType")
    complaint_sub_type: str | None = Field(default=None, alias="complaintSubType")
    description: str | None = None
    train_number: str | None = Field(default=None, alias="trainNumber")
    coach_number: str | None = Field(default=None, alias="coachNumber")
    seat_number: str | None = Field(default=None, alias="seatNumber")
    nearest_station: str | None = Field(default=None, alias="nearestStation")
    platform_number: str | None = Field(default=None, alias="platformNumber")

    @field_validator("complaint_area", mode="before")
    @classmethod
    def _upper_area(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) and value.strip() else None

    @field_validator("pnr", mode="before")
    @classmethod
    def _digits_only_pnr(cls, value: Any) -> Any:
        if value is None:
            return None
        digits = re.sub(r"\D", "", str(value))
        return digits if len(digits) == 10 else None


def parse_json_object(text: str) -> dict[str, Any]:
    """Decode a JSON-mode reply, tolerating a markdown code fence around it."""
    payload = json.loads(_FENCE.sub("", text.strip()))
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
    return payload


class ComplaintAnalyzer:
    def __init__(self, controller: TieredFallbackController) -> None:
        self.controller = controller

    async def analyze(self, complaint: Complaint) -> ComplaintAnalysis:
        """Category, urgency, summary, keywords and department for a stored complaint."""
        lines = [
            f"Complaint Area: {complaint.complaint_area or 'N/A'}",
            f"PNR: {complaint.pnr or 'N/A'}",
            f"Train: {complaint.train_number or 'N/A'}",
            f"Station: {complaint.station_code or 'N/A'}",
            f"Coach: {complaint.coach_number or 'N/A'}",
            f"Passenger's Complaint Type: {complaint.complaint_type}",
            f"Passenger's Complaint Sub-Type: {complaint.complaint_sub_type or 'N/A'}",
            "",
            f"Full Description: {complaint.description}",
        ]
        instruction = ANALYSIS_INSTRUCTION.format(departments=", ".join(DEPARTMENTS))
        analysis = await self._structured(instruction, "\n".join(lines), ComplaintAnalysis)
        logger.info(
            "Analysed %s: %s, urgency %d", complaint.reference, analysis.category, analysis.urgency_score
        )
        return analysis

    async def extract_details(self, text: str) -> ExtractedComplaint:
        """Complaint form fields mentioned in free text (a chat message or a description)."""
        return await self._structured(EXTRACTION_INSTRUCTION, text, ExtractedComplaint)

    async def _structured(self, instruction: str, prompt: str, model: type[M]) -> M:
        user_turn = ConversationMessage.user(prompt)

        # Malformed JSON fails the attempt so the controller retries it.
        async def _operation(adapter: ProviderAdapter, tier: TierConfig) -> M:
            reply = await adapter.converse(instruction, [], user_turn)
            return model.model_validate(parse_json_object(reply.text))

        outcome = await self.controller.run(_operation)
        return outcome.value
