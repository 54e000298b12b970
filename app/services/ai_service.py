# app/services/ai_service.py
"""
AI Classifier / Summarizer
Conversation summaries and email triage through OpenAI-compatible chat APIs.

Perplexity is the primary provider (OpenAI-compatible endpoint); OpenAI is
tried next when configured and the primary fails at the transport/API
level. Model output is untrusted: it is parsed, validated against a
pydantic schema, and replaced by a documented default when unusable.
Callers always get a ClassificationResult, never an exception.
"""

import asyncio
import json
import re
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_PROPOSED_LABELS = 4
_CODE_FENCE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```", re.IGNORECASE)

CONVERSATION_SYSTEM_PROMPT = """You are a conversation analyst for a medical office's SMS inbox.
Analyze the SMS conversation transcript and return ONLY a JSON object with:
- "summary": brief summary of the conversation
- "topics": key topics discussed (array of short strings)
- "needsResponse": true if the latest inbound message still needs a reply from the office
- "dateRange": the date range the conversation covers
- "draftReply": a short professional reply when needsResponse is true, otherwise null
- "explicitName": the contact's name if they state it explicitly, otherwise null
No markdown, no prose outside the JSON."""

EMAIL_SYSTEM_PROMPT = """You are an email triage assistant. Analyze the email and return ONLY a JSON object with:
- "summary": 1-2 sentence summary
- "needs_response": true if the sender expects a reply
- "priority": "high", "normal" or "low"
- "proposed_labels": up to 4 short label names
- "draft_reply": a professional reply when needs_response is true, otherwise null
No markdown, no prose outside the JSON."""


class AIServiceError(Exception):
    """Provider call failed; never escapes this module."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


class ConversationAnalysis(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    summary: str = ""
    topics: list[str] = Field(default_factory=list)
    needs_response: bool = Field(default=False, alias="needsResponse")
    date_range: str = Field(default="", alias="dateRange")
    draft_reply: str | None = Field(default=None, alias="draftReply")
    explicit_name: str | None = Field(default=None, alias="explicitName")

    @field_validator("topics", mode="before")
    @classmethod
    def _coerce_topics(cls, value):
        if not isinstance(value, list):
            return []
        return [str(t).strip() for t in value if t is not None and str(t).strip()]

    @field_validator("summary", "date_range", mode="before")
    @classmethod
    def _coerce_text(cls, value):
        return "" if value is None else str(value).strip()

    @field_validator("draft_reply", "explicit_name", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if value is None or not isinstance(value, str):
            return None
        return value.strip() or None


class EmailAnalysis(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str = ""
    needs_response: bool = False
    priority: Literal["high", "normal", "low"] = "normal"
    proposed_labels: list[str] = Field(default_factory=list)
    draft_reply: str | None = None

    @field_validator("summary", mode="before")
    @classmethod
    def _coerce_summary(cls, value):
        return "" if value is None else str(value).strip()

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value):
        value = str(value or "").strip().lower()
        return value if value in ("high", "normal", "low") else "normal"

    @field_validator("proposed_labels", mode="before")
    @classmethod
    def _cap_labels(cls, value):
        if not isinstance(value, list):
            return []
        labels = [str(v).strip() for v in value if v is not None and str(v).strip()]
        return labels[:MAX_PROPOSED_LABELS]

    @field_validator("draft_reply", mode="before")
    @classmethod
    def _blank_draft(cls, value):
        if not isinstance(value, str):
            return None
        return value.strip() or None


def default_conversation_analysis(summary: str = "Unable to summarize conversation") -> ConversationAnalysis:
    return ConversationAnalysis(summary=summary)


def default_email_analysis() -> EmailAnalysis:
    return EmailAnalysis(summary="Unable to analyze email")


T = TypeVar("T", bound=BaseModel)


@dataclass(slots=True)
class ClassificationResult(Generic[T]):
    """Validated model output, or the documented default plus why it was used."""

    value: T
    ok: bool
    fallback_reason: str | None = None
    provider: str | None = None

    @classmethod
    def success(cls, value: T, provider: str) -> "ClassificationResult[T]":
        return cls(value=value, ok=True, provider=provider)

    @classmethod
    def fallback(cls, value: T, reason: str, provider: str | None = None) -> "ClassificationResult[T]":
        return cls(value=value, ok=False, fallback_reason=reason, provider=provider)


@dataclass(slots=True)
class AIProvider:
    name: str
    client: Any
    model: str
    json_schema_mode: bool = False

    def response_format(self, schema_model: type[BaseModel]) -> dict[str, Any]:
        if self.json_schema_mode:
            return {"type": "json_schema", "json_schema": {"schema": schema_model.model_json_schema()}}
        return {"type": "json_object"}


def strip_code_fences(content: str) -> str:
    match = _CODE_FENCE.search(content)
    return match.group(1).strip() if match else content.strip()


def _build_default_providers() -> list[AIProvider]:
    providers: list[AIProvider] = []
    if settings.PERPLEXITY_API_KEY:
        providers.append(
            AIProvider(
                name="perplexity",
                client=AsyncOpenAI(
                    api_key=settings.PERPLEXITY_API_KEY,
                    base_url=settings.PERPLEXITY_BASE_URL,
                    timeout=settings.AI_TIMEOUT_SECONDS,
                    max_retries=0,
                ),
                model=settings.PERPLEXITY_MODEL,
                json_schema_mode=True,
            )
        )
    if settings.OPENAI_API_KEY:
        providers.append(
            AIProvider(
                name="openai",
                client=AsyncOpenAI(
                    api_key=settings.OPENAI_API_KEY, timeout=settings.AI_TIMEOUT_SECONDS, max_retries=0
                ),
                model=settings.OPENAI_MODEL,
            )
        )
    return providers


class AIService:
    """Runs classification prompts against the configured provider chain."""

    def __init__(self, providers: list[AIProvider] | None = None):
        self.providers = providers if providers is not None else _build_default_providers()
        if not self.providers:
            logger.warning("No AI provider configured; classifications will use defaults")

    async def summarize_conversation(self, transcript: str) -> ClassificationResult[ConversationAnalysis]:
        user_message = transcript[: settings.TRANSCRIPT_CHAR_BUDGET]
        return await self._classify(
            CONVERSATION_SYSTEM_PROMPT,
            user_message,
            ConversationAnalysis,
            default_conversation_analysis,
        )

    async def analyze_email(
        self, from_address: str, to_address: str, subject: str, body: str
    ) -> ClassificationResult[EmailAnalysis]:
        user_message = (
            f"From: {from_address}\nTo: {to_address}\nSubject: {subject}\n\n"
            f"Body:\n{body[: settings.EMAIL_BODY_CHAR_BUDGET]}"
        )
        return await self._classify(EMAIL_SYSTEM_PROMPT, user_message, EmailAnalysis, default_email_analysis)

    async def _classify(self, system_message, user_message, schema_model, make_default) -> ClassificationResult:
        if not self.providers:
            return ClassificationResult.fallback(make_default(), "no AI provider configured")

        failures: list[str] = []
        for provider in self.providers:
            try:
                raw = await self._call_with_retry(provider, system_message, user_message, schema_model)
            except AIServiceError as e:
                failures.append(f"{provider.name}: {e}")
                logger.warning("AI provider failed, trying next", provider=provider.name, error=str(e))
                continue

            return self._parse(raw, schema_model, make_default, provider.name)

        reason = "; ".join(failures)
        logger.error("All AI providers failed", reason=reason)
        return ClassificationResult.fallback(make_default(), reason)

    def _parse(self, raw: str, schema_model, make_default, provider_name: str) -> ClassificationResult:
        try:
            data = json.loads(strip_code_fences(raw))
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            return ClassificationResult.success(schema_model.model_validate(data), provider_name)
        except (json.JSONDecodeError, ValidationError, ValueError) as e:
            logger.warning(
                "AI output rejected, using defaults",
                provider=provider_name,
                error=str(e)[:200],
                raw_preview=raw[:200],
            )
            default = make_default()
            # Non-JSON prose is still a usable summary for conversations
            if isinstance(default, ConversationAnalysis) and raw.strip():
                default = default_conversation_analysis(summary=raw.strip()[:2000])
            return ClassificationResult.fallback(default, f"malformed output: {e}", provider_name)

    async def _call_with_retry(
        self, provider: AIProvider, system_message: str, user_message: str, schema_model
    ) -> str:
        """Chat completion with retry on rate limits, timeouts and 5xx."""
        max_attempts = max(settings.AI_MAX_RETRIES, 1)
        last_error: Exception | None = None

        for attempt in range(max_attempts):
            try:
                response = await provider.client.chat.completions.create(
                    model=provider.model,
                    messages=[
                        {"role": "system", "content": system_message},
                        {"role": "user", "content": user_message},
                    ],
                    temperature=settings.AI_TEMPERATURE,
                    max_tokens=settings.AI_MAX_TOKENS,
                    response_format=provider.response_format(schema_model),
                )
                content = response.choices[0].message.content if response.choices else None
                logger.info(
                    "AI call successful",
                    provider=provider.name,
                    attempt=attempt + 1,
                    response_length=len(content or ""),
                    usage_tokens=response.usage.total_tokens if getattr(response, "usage", None) else 0,
                )
                return content or ""

            except openai.RateLimitError as e:
                last_error = e
                wait_time = min(2**attempt, 30)
                logger.warning(
                    "AI rate limit hit", provider=provider.name, attempt=attempt + 1, wait_time=wait_time
                )
                if attempt < max_attempts - 1:
                    await asyncio.sleep(wait_time)

            except (openai.APITimeoutError, openai.APIConnectionError) as e:
                last_error = e
                logger.warning(
                    "AI transport error", provider=provider.name, attempt=attempt + 1, error=str(e)
                )

            except openai.APIStatusError as e:
                last_error = e
                if 400 <= e.status_code < 500:
                    logger.error(
                        "AI client error (not retrying)",
                        provider=provider.name,
                        status_code=e.status_code,
                    )
                    break
                logger.warning(
                    "AI server error",
                    provider=provider.name,
                    attempt=attempt + 1,
                    status_code=e.status_code,
                )

            except openai.APIError as e:
                last_error = e
                logger.warning("AI API error", provider=provider.name, attempt=attempt + 1, error=str(e))

        raise AIServiceError(f"{type(last_error).__name__}: {last_error}") from last_error


_ai_service: AIService | None = None


def get_ai_service() -> AIService:
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService()
    return _ai_service
