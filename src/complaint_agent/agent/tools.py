"""Built-in tools for the complaint assistant."""

from __future__ import annotations

import difflib
import re
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal, Protocol

from pydantic import BaseModel, Field

from complaint_agent.agent.emergency import build_preparation_message, detect_emergency_type
from complaint_agent.agent.registry import ToolRegistry, ToolSpec

ChatMode = Literal["tracking", "enquiry", "suggestions", "rail-anubhav"]

MODE_INSTRUCTIONS: dict[str, str] = {
    "tracking": "Ask for the Complaint Reference Number (or PNR) and look it up with getComplaintStatus.",
    "enquiry": "Answer general railway questions directly; ask a clarifying question if the query is vague.",
    "suggestions": "Invite the passenger to share their suggestion and summarise it back before submitting.",
    "rail-anubhav": "Invite the passenger to describe their journey experience in their own words.",
}

_PNR_PATTERN = re.compile(r"^\d{10}$")
_UTS_PATTERN = re.compile(r"^[A-Za-z0-9]{8,}$")


ValidationKind = Literal["station", "train"]


class ValidationOutcome(BaseModel):
    valid: bool
    canonical: str
    name: str | None = None
    message: str
    suggestions: list[str] = Field(default_factory=list)


class ReferenceValidator(Protocol):
    def validate(self, kind: ValidationKind, value: str) -> ValidationOutcome: ...


DEFAULT_STATIONS: dict[str, str] = {
    "NDLS": "New Delhi",
    "CSMT": "Chhatrapati Shivaji Maharaj Terminus",
    "HWH": "Howrah Junction",
    "MAS": "Chennai Central",
    "SBC": "KSR Bengaluru",
    "CNB": "Kanpur Central",
    "LKO": "Lucknow Charbagh",
    "BCT": "Mumbai Central",
    "PNBE": "Patna Junction",
    "ADI": "Ahmedabad Junction",
}

DEFAULT_TRAINS: dict[str, str] = {
    "12001": "Bhopal Shatabdi Express",
    "12301": "Howrah Rajdhani Express",
    "12951": "Mumbai Rajdhani Express",
    "12259": "Sealdah Duronto Express",
    "22439": "Vande Bharat Express",
    "12627": "Karnataka Express",
}


class KnownValuesValidator:
    """Validates station codes and train numbers against static tables."""

    def __init__(
        self,
        stations: dict[str, str] | None = None,
        trains: dict[str, str] | None = None,
    ) -> None:
        self.stations = {code.upper(): name for code, name in (stations or DEFAULT_STATIONS).items()}
        self.trains = dict(trains or DEFAULT_TRAINS)

    def validate(self, kind: ValidationKind, value: str) -> ValidationOutcome:
        if kind == "station":
            return self._station(value)
        if kind == "train":
            return self._train(value)
        raise ValueError(f"Unknown reference kind: {kind}")

    def _station(self, value: str) -> ValidationOutcome:
        query = value.strip()
        code = query.upper()
        if code in self.stations:
            return ValidationOutcome(valid=True, canonical=code, name=self.stations[code], message=f"{code} is {self.stations[code]}")
        for known_code, name in self.stations.items():
            if name.lower() == query.lower():
                return ValidationOutcome(valid=True, canonical=known_code, name=name, message=f"{name} has code {known_code}")
        candidates = difflib.get_close_matches(code, list(self.stations), n=3, cutoff=0.5)
        candidates += [
            code_for_name
            for name in difflib.get_close_matches(query.title(), list(self.stations.values()), n=3, cutoff=0.6)
            for code_for_name, station_name in self.stations.items()
            if station_name == name and code_for_name not in candidates
        ]
        return ValidationOutcome(
            valid=False,
            canonical=query,
            message=f"Station '{query}' not found",
            suggestions=[f"{candidate} ({self.stations[candidate]})" for candidate in candidates],
        )

    def _train(self, value: str) -> ValidationOutcome:
        number = value.strip()
        if not re.fullmatch(r"\d{5}", number):
            return ValidationOutcome(valid=False, canonical=number, message="Train numbers are 5 digits")
        if number in self.trains:
            return ValidationOutcome(valid=True, canonical=number, name=self.trains[number], message=f"{number} is {self.trains[number]}")
        return ValidationOutcome(
            valid=False,
            canonical=number,
            message=f"Train {number} not found",
            suggestions=difflib.get_close_matches(number, list(self.trains), n=3, cutoff=0.6),
        )


class Complaint(BaseModel):
    reference: str
    complaint_type: str
    description: str
    complaint_sub_type: str | None = None
    complaint_area: str | None = None
    pnr: str | None = None
    train_number: str | None = None
    station_code: str | None = None
    coach_number: str | None = None
    status: str = "registered"
    created_at: str


class ComplaintStore(Protocol):
    def add_complaint(self, data: dict[str, Any]) -> Complaint: ...

    def get_complaints(self) -> list[Complaint]: ...


class SqliteComplaintStore:
    """Complaint persistence on a local SQLite file.

    `add_complaint` assigns the reference and creation time; callers pass the
    remaining `Complaint` fields.
    """

    def __init__(self, sqlite_path: str | Path = "complaints.db") -> None:
        self.db_file = Path(sqlite_path)
        _ensure_complaint_table(self.db_file)

    def add_complaint(self, data: dict[str, Any]) -> Complaint:
        complaint = Complaint(
            **{
                **data,
                "reference": new_complaint_reference(),
                "created_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        with sqlite3.connect(self.db_file) as conn:
            conn.execute(
                "INSERT INTO complaints(reference, payload) VALUES(?, ?)",
                (complaint.reference, complaint.model_dump_json()),
            )
            conn.commit()
        return complaint

    def get_complaints(self) -> list[Complaint]:
        with sqlite3.connect(self.db_file) as conn:
            cur = conn.execute("SELECT payload FROM complaints ORDER BY rowid")
            rows = cur.fetchall()
        return [Complaint.model_validate_json(row[0]) for row in rows]


def _ensure_complaint_table(db_path: Path) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute("CREATE TABLE IF NOT EXISTS complaints (reference TEXT PRIMARY KEY, payload TEXT NOT NULL)")
        conn.commit()


def new_complaint_reference(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"CMP-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


class PnrInput(BaseModel):
    pnr: str = Field(min_length=1, description="10-digit PNR number")


class UtsInput(BaseModel):
    uts_number: str = Field(min_length=1, description="UTS ticket number")


class StationInput(BaseModel):
    station: str = Field(min_length=1, description="Station code or name")


class TrainInput(BaseModel):
    train_number: str = Field(min_length=1, description="5-digit train number")


class ComplaintStatusInput(BaseModel):
    complaintId: str = Field(min_length=1, description="Complaint Reference Number (e.g. CMP-...) or PNR")


class SubmitComplaintInput(BaseModel):
    complaintType: str = Field(min_length=1, description="Category such as Security, Cleanliness, Electrical")
    description: str = Field(min_length=1, description="What happened")
    complaintSubType: str | None = Field(default=None, description="Sub-category such as Theft")
    complaintArea: str | None = Field(default=None, description="TRAIN or STATION")
    pnr: str | None = Field(default=None, description="10-digit PNR number")
    trainNumber: str | None = Field(default=None, description="5-digit train number")
    stationCode: str | None = Field(default=None, description="Station code")
    coachNumber: str | None = Field(default=None, description="Coach, e.g. S5")


class SwitchModeInput(BaseModel):
    mode: ChatMode = Field(description="Assistant mode to switch to")
    reason: str | None = Field(default=None, description="Reason for switching mode")


class TriggerEmergencyInput(BaseModel):
    emergencyType: str = Field(min_length=1, description="medical, security, fire, accident, harassment, etc.")
    description: str = Field(min_length=1, description="Description of the emergency situation")


def validate_pnr(pnr: str) -> dict[str, Any]:
    cleaned = re.sub(r"\s+", "", pnr)
    if _PNR_PATTERN.fullmatch(cleaned):
        return {"valid": True, "pnr": cleaned, "message": f"PNR {cleaned} has a valid format"}
    return {"valid": False, "pnr": cleaned, "message": "PNR must be exactly 10 digits"}


def validate_uts(uts_number: str) -> dict[str, Any]:
    cleaned = uts_number.strip()
    if _UTS_PATTERN.fullmatch(cleaned):
        return {"valid": True, "uts_number": cleaned.upper(), "message": "UTS number has a valid format"}
    return {"valid": False, "uts_number": cleaned, "message": "UTS numbers are at least 8 letters or digits"}


def register_builtin_tools(
    registry: ToolRegistry,
    *,
    store: ComplaintStore,
    validator: ReferenceValidator | None = None,
) -> None:
    """Register the default tool set used by the orchestrator.

    Tools:
    - `validatePNR` / `validateUTS`: ticket identifier format checks.
    - `validateStation` / `validateTrain`: lookups through the reference validator.
    - `getComplaintStatus` / `submitComplaint`: complaint store access.
    - `switchChatMode`: returns instructions for the requested assistant mode.
    - `triggerEmergency`: prepares an emergency summary awaiting confirmation.
    """
    validator = validator or KnownValuesValidator()

    def _status(input_data: ComplaintStatusInput) -> dict[str, Any]:
        key = input_data.complaintId.strip()
        matches = [
            complaint
            for complaint in store.get_complaints()
            if complaint.reference == key.upper() or complaint.pnr == key
        ]
        if matches:
            return {"found": True, "complaints": [item.model_dump() for item in matches]}
        return {"found": False, "message": f"No complaint found for {key}"}

    def _submit(input_data: SubmitComplaintInput) -> dict[str, Any]:
        complaint = store.add_complaint(
            {
                "complaint_type": input_data.complaintType,
                "complaint_sub_type": input_data.complaintSubType,
                "complaint_area": input_data.complaintArea,
                "description": input_data.description,
                "pnr": input_data.pnr,
                "train_number": input_data.trainNumber,
                "station_code": input_data.stationCode.upper() if input_data.stationCode else None,
                "coach_number": input_data.coachNumber,
            }
        )
        return {"submitted": True, "reference": complaint.reference, "status": complaint.status}

    def _switch_mode(input_data: SwitchModeInput) -> dict[str, Any]:
        return {"mode": input_data.mode, "instructions": MODE_INSTRUCTIONS[input_data.mode]}

    def _trigger_emergency(input_data: TriggerEmergencyInput) -> dict[str, Any]:
        emergency_type = detect_emergency_type(f"{input_data.emergencyType} {input_data.description}")
        return {
            "emergency_type": emergency_type,
            "summary": build_preparation_message(input_data.description, emergency_type),
            "awaiting_confirmation": True,
        }

    registry.register(
        ToolSpec(
            name="validatePNR",
            description="Validate the format of a 10-digit PNR number.",
            args_schema=PnrInput,
            handler=lambda data: validate_pnr(data.pnr),
            tags=["validation"],
        )
    )
    registry.register(
        ToolSpec(
            name="validateUTS",
            description="Validate the format of a UTS (unreserved) ticket number.",
            args_schema=UtsInput,
            handler=lambda data: validate_uts(data.uts_number),
            tags=["validation"],
        )
    )
    registry.register(
        ToolSpec(
            name="validateStation",
            description="Check a station code or name and suggest close matches.",
            args_schema=StationInput,
            handler=lambda data: validator.validate("station", data.station),
            tags=["validation"],
        )
    )
    registry.register(
        ToolSpec(
            name="validateTrain",
            description="Check a 5-digit train number.",
            args_schema=TrainInput,
            handler=lambda data: validator.validate("train", data.train_number),
            tags=["validation"],
        )
    )
    registry.register(
        ToolSpec(
            name="getComplaintStatus",
            description="Check the status of a complaint using its reference number (CRN) or PNR.",
            args_schema=ComplaintStatusInput,
            handler=_status,
            tags=["complaints"],
        )
    )
    registry.register(
        ToolSpec(
            name="submitComplaint",
            description="Submit a railway complaint and return its reference number.",
            args_schema=SubmitComplaintInput,
            handler=_submit,
            tags=["complaints"],
        )
    )
    registry.register(
        ToolSpec(
            name="switchChatMode",
            description="Switch to a specialised assistant mode (tracking, enquiry, suggestions, rail-anubhav).",
            args_schema=SwitchModeInput,
            handler=_switch_mode,
            tags=["mode"],
        )
    )
    registry.register(
        ToolSpec(
            name="triggerEmergency",
            description="Prepare an emergency report for the passenger to confirm.",
            args_schema=TriggerEmergencyInput,
            handler=_trigger_emergency,
            tags=["emergency"],
        )
    )
