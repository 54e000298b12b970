from app.config import DEFAULT_IGNORED_AUTO_REPLY
from app.models.domain.conversation_domain import (
    INCOMING,
    OUTGOING,
    OpenPhoneConversation,
    OpenPhoneMessage,
    build_transcript,
    extract_name_with_reason,
    filter_ignored,
    last_message_at,
    pick_last,
)


def _msg(direction, text, created_at, msg_id=None):
    return OpenPhoneMessage.from_api(
        {"id": msg_id, "direction": direction, "text": text, "createdAt": created_at}
    )


def test_transcript_is_chronological_with_direction_tags():
    messages = [
        _msg(OUTGOING, "We can do Tuesday", "2025-01-02T09:00:00.000Z"),
        _msg(INCOMING, "Can I reschedule?", "2025-01-01T15:30:00.000Z"),
    ]

    assert build_transcript(messages) == (
        "[2025-01-01T15:30:00.000Z] IN: Can I reschedule?\n"
        "[2025-01-02T09:00:00.000Z] OUT: We can do Tuesday"
    )


def test_empty_transcript_for_no_messages():
    assert build_transcript([]) == ""


def test_auto_reply_is_filtered_despite_whitespace_differences():
    auto_reply = DEFAULT_IGNORED_AUTO_REPLY.replace(". ", ".\n  ")
    messages = [
        _msg(OUTGOING, auto_reply, "2025-01-01T10:00:00Z"),
        _msg(INCOMING, "Thanks!", "2025-01-01T10:05:00Z"),
    ]

    kept = filter_ignored(messages, [DEFAULT_IGNORED_AUTO_REPLY])

    assert [m.text for m in kept] == ["Thanks!"]


def test_pick_last_skips_blank_text():
    messages = [
        _msg(INCOMING, "First", "2025-01-01T10:00:00Z", "m1"),
        _msg(INCOMING, "Second", "2025-01-01T11:00:00Z", "m2"),
        _msg(INCOMING, "   ", "2025-01-01T12:00:00Z", "m3"),
    ]

    assert pick_last(messages, INCOMING).id == "m2"
    assert pick_last(messages, OUTGOING) is None


def test_last_message_at_uses_latest_timestamp():
    messages = [
        _msg(INCOMING, "a", "2025-01-01T10:00:00Z"),
        _msg(OUTGOING, "b", "2025-01-03T10:00:00Z"),
    ]

    assert last_message_at(messages) == "2025-01-03T10:00:00Z"
    assert last_message_at([]) is None


def test_extract_name_from_introduction():
    transcript = "[2025-01-01T10:00:00Z] IN: Hi, my name is Sarah"

    name, rationale = extract_name_with_reason(transcript)

    assert name == "Sarah"
    assert rationale == 'Name extracted from pattern: "my name is Sarah"'


def test_extract_name_ignores_greetings():
    assert extract_name_with_reason("Thanks,\nHi") is None
    assert extract_name_with_reason("[2025-01-01T10:00:00Z] IN: see you soon") is None


def test_conversation_unknown_name_detection():
    assert OpenPhoneConversation.from_api({"id": "c1", "name": None}).has_unknown_name()
    assert OpenPhoneConversation.from_api({"id": "c2", "name": "Unknown Caller"}).has_unknown_name()
    assert not OpenPhoneConversation.from_api({"id": "c3", "name": "Jane Doe"}).has_unknown_name()


def test_conversation_participant_is_first_entry():
    convo = OpenPhoneConversation.from_api(
        {"id": "c1", "phoneNumberId": "PN1", "participants": ["+15551234567", "+15557654321"]}
    )

    assert convo.participant == "+15551234567"
    assert OpenPhoneConversation.from_api({"id": "c2"}).participant is None
