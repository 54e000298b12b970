"""
Tests for the suppression filter chain used by both pipelines.
"""

from unittest.mock import AsyncMock

import pytest

from app.db.helpers import DatabaseError
from app.services import suppression_service
from app.services.suppression_service import (
    IdentitySuppressionFilter,
    PhraseSuppressionFilter,
    StaticBlocklistFilter,
    SuppressionCandidate,
    SuppressionChain,
    build_gmail_chain,
)


@pytest.fixture
def suppression_rows(monkeypatch):
    identity = AsyncMock(return_value=[])
    phrases = AsyncMock(return_value=[])
    monkeypatch.setattr(suppression_service.SuppressionRepository, "find_identity_matches", identity)
    monkeypatch.setattr(suppression_service.SuppressionRepository, "list_phrases", phrases)
    return identity, phrases


def _openphone_chain(phones=None, phrases=None):
    return SuppressionChain(
        [
            IdentitySuppressionFilter(),
            StaticBlocklistFilter(phones=phones or [], phrases=phrases or []),
            PhraseSuppressionFilter(),
        ]
    )


@pytest.mark.asyncio
async def test_phone_suppression_row_wins(suppression_rows):
    identity, _ = suppression_rows
    identity.return_value = [{"kind": "phone", "value": "+15551234567", "reason": None}]

    decision = await _openphone_chain().evaluate(
        SuppressionCandidate(phone="+15551234567", conversation_id="c1", transcript="hello")
    )

    assert decision.suppressed is True
    assert decision.reason == "Suppressed by phone"
    assert decision.matched_by == "db_identity"


@pytest.mark.asyncio
async def test_stored_reason_is_used_verbatim(suppression_rows):
    identity, _ = suppression_rows
    identity.return_value = [{"kind": "conversation", "value": "c1", "reason": "Vendor thread"}]

    decision = await _openphone_chain().evaluate(SuppressionCandidate(phone="+1", conversation_id="c1"))

    assert decision.reason == "Vendor thread"


@pytest.mark.asyncio
async def test_env_phone_blocklist(suppression_rows):
    decision = await _openphone_chain(phones=["+15550000000"]).evaluate(
        SuppressionCandidate(phone="+15550000000", conversation_id="c1")
    )

    assert decision.suppressed is True
    assert decision.reason == "Phone is blocklisted (env)"


@pytest.mark.asyncio
async def test_env_phrase_is_case_insensitive(suppression_rows):
    decision = await _openphone_chain(phrases=["STOP"]).evaluate(
        SuppressionCandidate(phone="+1", conversation_id="c1", transcript="IN: please stop texting")
    )

    assert decision.suppressed is True
    assert decision.reason == "Transcript contains blocked phrase: STOP"


@pytest.mark.asyncio
async def test_db_phrase_suppression(suppression_rows):
    _, phrases = suppression_rows
    phrases.return_value = [{"value": "unsubscribe", "reason": None}]

    decision = await _openphone_chain().evaluate(
        SuppressionCandidate(phone="+1", conversation_id="c1", transcript="IN: Unsubscribe me")
    )

    assert decision.suppressed is True
    assert decision.matched_by == "db_phrase"
    assert decision.reason == "Transcript contains blocked phrase: unsubscribe"


@pytest.mark.asyncio
async def test_lookup_failures_do_not_suppress(suppression_rows):
    identity, phrases = suppression_rows
    identity.side_effect = DatabaseError("boom", "fetch_all")
    phrases.side_effect = DatabaseError("boom", "fetch_all")

    decision = await _openphone_chain().evaluate(
        SuppressionCandidate(phone="+1", conversation_id="c1", transcript="hello")
    )

    assert decision.suppressed is False
    assert decision.reason == ""


@pytest.mark.asyncio
async def test_gmail_sender_rule_is_exact_and_case_insensitive():
    chain = build_gmail_chain([{"rule_type": "skip_sender", "pattern": "News@Example.com"}])

    skipped = await chain.evaluate(SuppressionCandidate(sender="news@example.com", subject="Weekly"))
    kept = await chain.evaluate(SuppressionCandidate(sender="news@example.com.evil", subject="Weekly"))

    assert skipped.suppressed is True
    assert skipped.reason == 'Skipped (rule): sender "news@example.com"'
    assert kept.suppressed is False


@pytest.mark.asyncio
async def test_gmail_subject_rule_is_substring():
    chain = build_gmail_chain(
        [
            {"rule_type": "skip_subject", "pattern": "Newsletter"},
            {"rule_type": "skip_subject", "pattern": "   "},
        ]
    )

    decision = await chain.evaluate(SuppressionCandidate(sender="a@b.com", subject="Our weekly newsletter #4"))

    assert decision.suppressed is True
    assert decision.reason == 'Skipped (rule): subject matched "Newsletter"'
