import pytest
from pydantic import ValidationError

from complaint_agent.agent.emergency import discloses_contacts, is_emergency_preparation
from complaint_agent.agent.registry import ToolRegistry
from complaint_agent.agent.tools import (
    KnownValuesValidator,
    SqliteComplaintStore,
    register_builtin_tools,
    validate_pnr,
    validate_uts,
)


def _registry(tmp_path) -> ToolRegistry:
    registry = ToolRegistry()
    register_builtin_tools(registry, store=SqliteComplaintStore(tmp_path / "complaints.db"))
    return registry


def test_builtin_tool_names(tmp_path) -> None:
    names = {declaration.name for declaration in _registry(tmp_path).declarations()}

    assert names == {
        "validatePNR",
        "validateUTS",
        "validateStation",
        "validateTrain",
        "getComplaintStatus",
        "submitComplaint",
        "switchChatMode",
        "triggerEmergency",
    }


def test_pnr_and_uts_formats() -> None:
    assert validate_pnr("123 456 7890")["valid"] is True
    assert validate_pnr("12345")["valid"] is False
    assert validate_uts("x0ab1234")["valid"] is True
    assert validate_uts("short")["valid"] is False


def test_submit_then_lookup_by_reference_and_pnr(tmp_path) -> None:
    registry = _registry(tmp_path)

    submitted = registry.execute(
        "submitComplaint",
        {"complaintType": "Cleanliness", "description": "Dirty toilet in B2", "pnr": "1234567890", "stationCode": "ndls"},
    )

    assert submitted["submitted"] is True
    assert submitted["reference"].startswith("CMP-")

    by_reference = registry.execute("getComplaintStatus", {"complaintId": submitted["reference"].lower()})
    by_pnr = registry.execute("getComplaintStatus", {"complaintId": "1234567890"})
    missing = registry.execute("getComplaintStatus", {"complaintId": "CMP-NOPE"})

    assert by_reference["found"] is True
    assert by_reference["complaints"][0]["station_code"] == "NDLS"
    assert by_pnr["complaints"][0]["reference"] == submitted["reference"]
    assert missing["found"] is False


def test_switch_mode_rejects_unknown_modes(tmp_path) -> None:
    registry = _registry(tmp_path)

    assert registry.execute("switchChatMode", {"mode": "tracking"})["mode"] == "tracking"
    with pytest.raises(ValidationError):
        registry.execute("switchChatMode", {"mode": "karaoke"})


def test_trigger_emergency_returns_preparation_only(tmp_path) -> None:
    result = _registry(tmp_path).execute(
        "triggerEmergency",
        {"emergencyType": "fire", "description": "Smoke in coach S5 of train 12951"},
    )

    assert result["emergency_type"] == "Fire Emergency"
    assert is_emergency_preparation(result["summary"])
    assert not discloses_contacts(result["summary"])


def test_known_values_validator_suggests_close_matches() -> None:
    validator = KnownValuesValidator()

    assert validator.validate("station", "ndls").name == "New Delhi"
    assert validator.validate("station", "Howrah Junction").canonical == "HWH"
    assert validator.validate("train", "12301").valid is True
    assert validator.validate("train", "12a01").valid is False

    unknown = validator.validate("station", "NDL")
    assert unknown.valid is False
    assert any(suggestion.startswith("NDLS") for suggestion in unknown.suggestions)

    with pytest.raises(ValueError):
        validator.validate("coach", "S5")


def test_sqlite_store_assigns_reference_and_lists_in_order(tmp_path) -> None:
    store = SqliteComplaintStore(tmp_path / "complaints.db")

    first = store.add_complaint({"complaint_type": "Cleanliness", "description": "Dirty toilet"})
    second = store.add_complaint({"complaint_type": "Electrical", "description": "Fan broken", "reference": "CMP-MINE"})

    assert first.reference.startswith("CMP-")
    assert second.reference != "CMP-MINE"
    assert [item.reference for item in store.get_complaints()] == [first.reference, second.reference]
    assert SqliteComplaintStore(tmp_path / "complaints.db").get_complaints()[0].description == "Dirty toilet"
