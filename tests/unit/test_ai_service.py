"""
Tests for the AI classifier: schema validation, fallbacks and provider order.
"""

import json

import httpx
import openai
import pytest

from app.services.ai_service import (
    ConversationAnalysis,
    EmailAnalysis,
    strip_code_fences,
)


def _timeout_error():
    return openai.APITimeoutError(request=httpx.Request("POST", "https://api.perplexity.ai/chat/completions"))


@pytest.mark.asyncio
async def test_conversation_summary_parses_camel_case_json(make_provider, ai_service_factory):
    payload = {
        "summary": "Patient asked to reschedule",
        "topics": ["scheduling", ""],
        "needsResponse": True,
        "dateRange": "Jan 1 - Jan 3",
        "draftReply": "Sure, what day works?",
        "explicitName": "  ",
    }
    provider = make_provider(responses=[json.dumps(payload)])
    service = ai_service_factory(provider)

    result = await service.summarize_conversation("[2025-01-01T10:00:00Z] IN: can we move my appt?")

    assert result.ok is True
    assert result.provider == "perplexity"
    assert result.value.summary == "Patient asked to reschedule"
    assert result.value.topics == ["scheduling"]
    assert result.value.needs_response is True
    assert result.value.draft_reply == "Sure, what day works?"
    assert result.value.explicit_name is None


@pytest.mark.asyncio
async def test_code_fenced_json_is_accepted(make_provider, ai_service_factory):
    content = '```json\n{"summary": "ok", "needsResponse": false}\n```'
    service = ai_service_factory(make_provider(responses=[content]))

    result = await service.summarize_conversation("transcript")

    assert result.ok is True
    assert result.value.summary == "ok"


@pytest.mark.asyncio
async def test_malformed_conversation_output_falls_back_to_raw_summary(make_provider, ai_service_factory):
    service = ai_service_factory(make_provider(responses=["The patient wants a refill."]))

    result = await service.summarize_conversation("transcript")

    assert result.ok is False
    assert "malformed output" in result.fallback_reason
    assert result.value.summary == "The patient wants a refill."
    assert result.value.needs_response is False
    assert result.value.draft_reply is None


@pytest.mark.asyncio
async def test_malformed_email_output_returns_documented_default(make_provider, ai_service_factory):
    service = ai_service_factory(make_provider(responses=["[1, 2, 3]"]))

    result = await service.analyze_email("a@example.com", "me@example.com", "Hi", "body")

    assert result.ok is False
    assert result.value == EmailAnalysis(summary="Unable to analyze email")
    assert result.value.priority == "normal"
    assert result.value.proposed_labels == []


@pytest.mark.asyncio
async def test_email_analysis_normalizes_priority_and_caps_labels(make_provider, ai_service_factory):
    payload = {
        "summary": "Invoice question",
        "needs_response": True,
        "priority": "URGENT",
        "proposed_labels": ["billing", "finance", "q1", "vendors", "extra"],
        "draft_reply": "   ",
    }
    service = ai_service_factory(make_provider(responses=[json.dumps(payload)]))

    result = await service.analyze_email("a@example.com", "me@example.com", "Invoice", "body")

    assert result.ok is True
    assert result.value.priority == "normal"
    assert result.value.proposed_labels == ["billing", "finance", "q1", "vendors"]
    assert result.value.draft_reply is None


@pytest.mark.asyncio
async def test_transcript_is_truncated_to_budget(make_provider, ai_service_factory, monkeypatch):
    from app.services import ai_service

    monkeypatch.setattr(ai_service.settings, "TRANSCRIPT_CHAR_BUDGET", 10)
    provider = make_provider(responses=['{"summary": "s"}'])
    service = ai_service_factory(provider)

    await service.summarize_conversation("x" * 50)

    messages = provider.client.chat.completions.create.call_args.kwargs["messages"]
    assert messages[1]["content"] == "x" * 10


@pytest.mark.asyncio
async def test_falls_back_to_openai_when_primary_fails(make_provider, ai_service_factory, monkeypatch):
    from app.services import ai_service

    monkeypatch.setattr(ai_service.settings, "AI_MAX_RETRIES", 1)
    primary = make_provider("perplexity", side_effect=_timeout_error())
    secondary = make_provider("openai", responses=['{"summary": "from openai", "needsResponse": true}'])
    service = ai_service_factory(primary, secondary)

    result = await service.summarize_conversation("transcript")

    assert result.ok is True
    assert result.provider == "openai"
    assert result.value.summary == "from openai"
    assert secondary.client.chat.completions.create.call_args.kwargs["response_format"] == {
        "type": "json_object"
    }


@pytest.mark.asyncio
async def test_all_providers_failing_returns_default(make_provider, ai_service_factory, monkeypatch):
    from app.services import ai_service

    monkeypatch.setattr(ai_service.settings, "AI_MAX_RETRIES", 2)
    provider = make_provider(side_effect=_timeout_error())
    service = ai_service_factory(provider)

    result = await service.summarize_conversation("transcript")

    assert result.ok is False
    assert result.value == ConversationAnalysis(summary="Unable to summarize conversation")
    assert provider.client.chat.completions.create.await_count == 2


@pytest.mark.asyncio
async def test_no_providers_configured_never_raises(ai_service_factory):
    service = ai_service_factory()

    result = await service.analyze_email("a@example.com", "me@example.com", "s", "b")

    assert result.ok is False
    assert result.fallback_reason == "no AI provider configured"


def test_strip_code_fences_passes_plain_text_through():
    assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'
    assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
