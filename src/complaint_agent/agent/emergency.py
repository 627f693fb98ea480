"""Emergency detection and two-stage confirmation.

The state machine is derived, never stored: every call recomputes it from the
current message and the most recent assistant turn. A detected emergency first
produces a *preparation* message (summary plus a request to reply CONFIRM,
no contact numbers). Only a confirmation that directly follows a preparation
message unlocks the full response with emergency contacts.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from complaint_agent.config import EmergencyConfig
from complaint_agent.types import ConversationMessage


class EmergencyState(str, Enum):
    NORMAL = "normal"
    EMERGENCY_DETECTED = "emergency_detected"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"


@dataclass(slots=True, frozen=True)
class EmergencyContact:
    label: str
    number: str


EMERGENCY_CONTACTS: tuple[EmergencyContact, ...] = (
    EmergencyContact(label="Railway Helpline", number="139"),
    EmergencyContact(label="Railway Protection Force", number="182"),
    EmergencyContact(label="Medical Emergency", number="108"),
    EmergencyContact(label="Police Emergency", number="100"),
)

EMERGENCY_RESPONSE_TOKEN = "EMERGENCY_RESPONSE_NEEDED"

# Layer (a): unambiguous phrases, always an emergency.
EXPLICIT_EMERGENCY_PHRASES: tuple[str, ...] = (
    "emergency",
    "medical emergency",
    "call police",
    "call ambulance",
    "need ambulance",
    "robbery",
    "being robbed",
    "getting robbed",
    "someone attacked",
    "being attacked",
    "fire in train",
    "fire in coach",
    "train on fire",
    "heart attack",
    "can't breathe",
    "cannot breathe",
    "bleeding heavily",
    "seriously injured",
    "life threatening",
    # Hinglish
    "bachao",
    "madad chahiye",
    "chori ho rahi",
    "aag lagi",
    "khoon beh raha",
    "jaan ka khatra",
)

EXPLICIT_EMERGENCY_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, flags=re.IGNORECASE)
    for pattern in (
        r"need\s+(urgent\s+)?help.*\b(now|immediately|urgent)\b",
        r"please\s+help.*\b(urgent|emergency|police|ambulance)\b",
        r"someone\s+(is\s+)?(hurt|injured|bleeding|unconscious)",
        r"can'?t\s+(breathe|breath)\b",
        r"accident\s+(happened|occurred|just)",
        r"being\s+(robbed|attacked|harassed)",
        r"life\s+(is\s+)?in\s+danger",
        r"\bsave\s+(me|us|him|her)\b",
    )
)

# Layer (b): single words that only count as whole words ("fire" but not "fired").
EMERGENCY_KEYWORDS: tuple[str, ...] = (
    "accident",
    "ambulance",
    "fire",
    "police",
    "attack",
    "harassment",
    "danger",
    "violence",
    "theft",
    "injured",
    "bleeding",
    # Hinglish
    "khatra",
    "chori",
    "maar",
    "aag",
    "bimar",
    "khoon",
    "gunda",
    "chor",
)

# Layer (c): urgency alone is casual; it needs a serious condition alongside.
URGENCY_INDICATORS: tuple[str, ...] = (
    "immediately",
    "urgent",
    "urgently",
    "asap",
    "right now",
    "just now",
    "happening now",
    "quick",
    "quickly",
    "jaldi",
    "abhi",
    "turant",
    "fauran",
)

SERIOUS_CONDITION_INDICATORS: tuple[str, ...] = (
    "hurt",
    "injured",
    "pain",
    "bleeding",
    "unconscious",
    "trapped",
    "stuck",
    "dying",
    "critical",
    "severe",
    "dard",
    "taklif",
    "zakhmi",
    "behosh",
)


def _word_pattern(words: Sequence[str]) -> re.Pattern[str]:
    alternation = "|".join(re.escape(word) for word in words)
    return re.compile(rf"\b(?:{alternation})\b", flags=re.IGNORECASE)


_KEYWORD_PATTERN = _word_pattern(EMERGENCY_KEYWORDS)
_URGENCY_PATTERN = _word_pattern(URGENCY_INDICATORS)
_CONDITION_PATTERN = _word_pattern(SERIOUS_CONDITION_INDICATORS)


def detect_emergency(message: str) -> bool:
    lowered = message.lower()
    if any(phrase in lowered for phrase in EXPLICIT_EMERGENCY_PHRASES):
        return True
    if any(pattern.search(lowered) for pattern in EXPLICIT_EMERGENCY_PATTERNS):
        return True
    if _KEYWORD_PATTERN.search(lowered):
        return True
    return bool(_URGENCY_PATTERN.search(lowered) and _CONDITION_PATTERN.search(lowered))


def is_confirmation(message: str, tokens: Sequence[str] | None = None) -> bool:
    accepted = tokens if tokens is not None else EmergencyConfig().confirmation_tokens
    return message.strip().lower() in accepted


def is_emergency_preparation(text: str, markers: Sequence[str] | None = None) -> bool:
    """True when `text` reads like a preparation message awaiting CONFIRM.

    The full post-confirmation response is excluded so a second "ok" does not
    re-trigger disclosure.
    """
    if EMERGENCY_RESPONSE_TOKEN in text:
        return False
    phrases = markers if markers is not None else EmergencyConfig().preparation_markers
    lowered = text.lower()
    return any(marker in lowered for marker in phrases)


def is_dismissal(message: str, phrases: Sequence[str] | None = None) -> bool:
    accepted = phrases if phrases is not None else EmergencyConfig().dismissal_phrases
    return bool(_word_pattern(accepted).search(message))


def last_assistant_text(history: Sequence[ConversationMessage]) -> str | None:
    for message in reversed(history):
        if message.role == "assistant":
            return message.text
    return None


def detect_emergency_type(message: str) -> str:
    lowered = message.lower()
    if any(word in lowered for word in ("medical", "doctor", "ambulance", "health", "heart attack", "bimar", "dard", "unconscious", "behosh")):
        return "Medical Emergency"
    if any(word in lowered for word in ("robbery", "theft", "security", "police", "chori", "chor", "gunda", "snatch", "attack")):
        return "Security/Safety"
    if any(word in lowered for word in ("fire", "smoke", "burn", "aag")):
        return "Fire Emergency"
    if any(word in lowered for word in ("accident", "crash", "derail", "takkar")):
        return "Accident"
    if any(word in lowered for word in ("harassment", "molestation", "abuse", "chedkhani", "badtameezi")):
        return "Harassment"
    return "General Emergency"


_TRAIN_PATTERN = re.compile(r"\btrain\s*(?:no\.?|number)?\s*(\d{4,5})\b|\b(\d{5})\b", flags=re.IGNORECASE)
_COACH_PATTERN = re.compile(r"\bcoach\s*([a-z]{0,2}\d{1,2})\b|\b([abcdehms]\d{1,2})\b", flags=re.IGNORECASE)
_BERTH_PATTERN = re.compile(r"\b(?:berth|seat)\s*(\d{1,3}[a-z]?)\b", flags=re.IGNORECASE)
_PLATFORM_PATTERN = re.compile(r"\bplatform\s*(?:no\.?)?\s*(\d{1,2})\b", flags=re.IGNORECASE)
_STATION_PATTERN = re.compile(r"\b([A-Za-z]{2,5})\s+station\b|\bstation\s+([A-Za-z]{2,5})\b", flags=re.IGNORECASE)
_PNR_PATTERN = re.compile(r"\b(\d{10})\b")
_COMPLAINT_REF_PATTERN = re.compile(r"\b((?:CMP|SUG|EXP|LOCAL)-[A-Z0-9]+(?:-[A-Z0-9]+)?)\b", flags=re.IGNORECASE)


def _first_group(match: re.Match[str] | None) -> str | None:
    if match is None:
        return None
    return next((group for group in match.groups() if group), None)


def extract_location(message: str) -> str | None:
    """Train/coach/berth or station/platform mentioned in the message."""
    parts: list[str] = []
    train = _first_group(_TRAIN_PATTERN.search(message))
    station = _first_group(_STATION_PATTERN.search(message))
    coach = _first_group(_COACH_PATTERN.search(message))
    berth = _first_group(_BERTH_PATTERN.search(message))
    platform = _first_group(_PLATFORM_PATTERN.search(message))

    if train:
        parts.append(f"Train {train}")
    if coach:
        parts.append(f"Coach {coach.upper()}")
    if berth:
        parts.append(f"Berth/Seat {berth.upper()}")
    if station:
        parts.append(f"{station.upper()} Station")
    if platform:
        parts.append(f"Platform {platform}")
    return ", ".join(parts) if parts else None


def extract_reference(message: str) -> str | None:
    complaint = _COMPLAINT_REF_PATTERN.search(message)
    if complaint:
        return complaint.group(1).upper()
    pnr = _PNR_PATTERN.search(message)
    if pnr:
        return f"PNR {pnr.group(1)}"
    return None


@dataclass(slots=True, frozen=True)
class EmergencyAssessment:
    state: EmergencyState
    emergency_type: str | None = None
    subject: str = ""

    @property
    def short_circuits(self) -> bool:
        return self.state is not EmergencyState.NORMAL


def assess_emergency(
    message: str,
    history: Sequence[ConversationMessage],
    config: EmergencyConfig | None = None,
) -> EmergencyAssessment:
    config = config or EmergencyConfig()
    previous = last_assistant_text(history)
    after_preparation = previous is not None and is_emergency_preparation(previous, config.preparation_markers)

    if after_preparation and is_confirmation(message, config.confirmation_tokens):
        subject = _latest_user_subject(history)
        return EmergencyAssessment(
            state=EmergencyState.CONFIRMED,
            emergency_type=detect_emergency_type(subject),
            subject=subject,
        )
    if detect_emergency(message):
        return EmergencyAssessment(
            state=EmergencyState.EMERGENCY_DETECTED,
            emergency_type=detect_emergency_type(message),
            subject=message,
        )
    if after_preparation and _supplies_details(message, config):
        subject = f"{_latest_user_subject(history)} {message}".strip()
        return EmergencyAssessment(
            state=EmergencyState.AWAITING_CONFIRMATION,
            emergency_type=detect_emergency_type(subject),
            subject=subject,
        )
    return EmergencyAssessment(state=EmergencyState.NORMAL)


def _supplies_details(message: str, config: EmergencyConfig) -> bool:
    if is_dismissal(message, config.dismissal_phrases):
        return False
    return extract_location(message) is not None or extract_reference(message) is not None


def _latest_user_subject(history: Sequence[ConversationMessage]) -> str:
    for message in reversed(history):
        if message.role == "user" and detect_emergency(message.text):
            return message.text
    for message in reversed(history):
        if message.role == "user":
            return message.text
    return ""


_CONFIRM_INSTRUCTION = (
    "Please reply 'CONFIRM' to submit this report to the Railway Protection Force (RPF) "
    "immediately. If anything is incorrect, please let me know."
)


def build_preparation_message(subject: str, emergency_type: str | None = None) -> str:
    emergency_type = emergency_type or detect_emergency_type(subject)
    location = extract_location(subject)
    reference = extract_reference(subject)
    details = subject.strip()
    if len(details) > 100:
        details = details[:100].rstrip() + "..."

    lines = [
        f"This is a serious {emergency_type.lower()} issue, and I will help you report it immediately.",
        "",
        "I am preparing your emergency complaint. Here is what I have:",
        f"- **Issue:** {emergency_type}",
        f"- **Location:** {location or 'Not provided'}",
        "- **Time:** Just now (current time will be logged)",
        f"- **Reference:** {reference or 'Not provided'}",
        f"- **Details:** {details}",
        "",
    ]
    if location is None:
        lines.append(
            "Please share your train number, coach or station so responders can reach you. "
            "You can tap the microphone button to speak your details quickly."
        )
    lines.append("If you can, move away from the danger and alert the coach attendant or nearby railway staff.")
    lines.append("")
    lines.append(_CONFIRM_INSTRUCTION)
    return "\n".join(lines)


def build_emergency_response(emergency_type: str | None = None) -> str:
    contacts = "\n".join(f"📞 {contact.label}: {contact.number}" for contact in EMERGENCY_CONTACTS)
    return "\n".join(
        [
            f"🚨 {EMERGENCY_RESPONSE_TOKEN} 🚨",
            "",
            "Your emergency complaint has been submitted to railway authorities. "
            "Please follow these immediate steps:",
            "",
            "**IMMEDIATE ACTIONS:**",
            "1. Call the appropriate emergency number below",
            "2. Move to a safe location if possible",
            "3. Share your exact location (train, coach, station) with responders",
            "4. Follow the instructions of railway staff and emergency responders",
            "",
            "**EMERGENCY CONTACTS:**",
            contacts,
            "",
            f"**Emergency Type:** {emergency_type or 'General Emergency'}",
        ]
    )


def discloses_contacts(text: str) -> bool:
    if EMERGENCY_RESPONSE_TOKEN in text or "📞" in text:
        return True
    lowered = text.lower()
    for contact in EMERGENCY_CONTACTS:
        if contact.label.lower() in lowered and re.search(rf"\b{contact.number}\b", text):
            return True
    return any(re.search(rf"\b(?:call|dial)\s+{contact.number}\b", lowered) for contact in EMERGENCY_CONTACTS)


def sanitize_preparation(reply: str, assessment: EmergencyAssessment, config: EmergencyConfig | None = None) -> str:
    """Make a model-written preparation safe to show.

    Empty replies and replies that leak contacts are replaced by the template;
    replies missing a preparation marker get the CONFIRM instruction appended
    so the next turn can be recognised.
    """
    config = config or EmergencyConfig()
    text = reply.strip()
    if not text or discloses_contacts(text):
        return build_preparation_message(assessment.subject, assessment.emergency_type)
    if not is_emergency_preparation(text, config.preparation_markers):
        text = f"{text}\n\n{_CONFIRM_INSTRUCTION}"
    return text
