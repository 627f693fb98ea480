from complaint_agent.agent.function_calls import (
    extract_function_call,
    format_function_call,
    scrub_function_call_residue,
    strip_function_call,
)


def test_extracts_call_with_arguments_and_span() -> None:
    text = 'Checking that for you.\nFUNCTION_CALL: validatePNR({"pnr": "1234567890"})\nOne moment.'

    match = extract_function_call(text)

    assert match is not None
    assert match.function_name == "validatePNR"
    assert match.arguments == {"pnr": "1234567890"}
    assert match.matched_text == 'FUNCTION_CALL: validatePNR({"pnr": "1234567890"})'
    assert text[match.start : match.end] == match.matched_text


def test_braces_inside_strings_and_escaped_quotes() -> None:
    text = 'FUNCTION_CALL: note({"note": "a \\"}\\" literal"})'

    match = extract_function_call(text)

    assert match is not None
    assert match.arguments == {"note": 'a "}" literal'}
    assert match.end == len(text)


def test_nested_objects_and_whitespace_before_paren() -> None:
    text = 'FUNCTION_CALL: submitComplaint  (\n  {"details": {"coach": "S5"}, "tags": ["theft"]}\n  )'

    match = extract_function_call(text)

    assert match is not None
    assert match.arguments["details"] == {"coach": "S5"}
    assert match.matched_text.endswith(")")


def test_malformed_but_balanced_json_returns_none() -> None:
    assert extract_function_call("FUNCTION_CALL: validatePNR({pnr: 1234567890,})") is None


def test_missing_header_unbalanced_or_non_object() -> None:
    assert extract_function_call("No calls here") is None
    assert extract_function_call('FUNCTION_CALL: validatePNR({"pnr": "1"') is None
    assert extract_function_call("FUNCTION_CALL: 9bad({})") is None
    assert extract_function_call("FUNCTION_CALL: validatePNR()") is None


def test_missing_closing_paren_still_parses() -> None:
    match = extract_function_call('FUNCTION_CALL: switchChatMode({"mode": "tracking"}')

    assert match is not None
    assert match.arguments == {"mode": "tracking"}


def test_only_first_call_is_returned() -> None:
    text = 'FUNCTION_CALL: a({"x": 1}) then FUNCTION_CALL: b({"y": 2})'

    match = extract_function_call(text)

    assert match is not None
    assert match.function_name == "a"


def test_strip_leaves_narration_and_reparse_finds_nothing() -> None:
    text = 'I am submitting your complaint now.\nFUNCTION_CALL: submitComplaint({"complaintType": "Cleanliness"})\nThank you.'
    match = extract_function_call(text)
    assert match is not None

    stripped = strip_function_call(text, match)

    assert stripped == "I am submitting your complaint now.\nThank you."
    assert extract_function_call(stripped) is None


def test_scrub_removes_dangling_marker() -> None:
    assert scrub_function_call_residue("Done.\nFUNCTION_CALL: broken({") == "Done."
    assert scrub_function_call_residue("Nothing to scrub") == "Nothing to scrub"


def test_format_then_extract() -> None:
    text = format_function_call("getComplaintStatus", {"complaintId": "CMP-1"})

    match = extract_function_call(text)

    assert match is not None
    assert match.function_name == "getComplaintStatus"
    assert match.arguments == {"complaintId": "CMP-1"}
