"""
OpenPhone API response models.
Serialized by alias so clients get camelCase keys.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RunResponse(BaseModel):
    """Outcome of one OpenPhone cleanup invocation."""

    model_config = ConfigDict(populate_by_name=True)

    run_id: str = Field(..., alias="runId")
    processed: int = Field(..., description="Conversations processed in this invocation")
    next_page_token: str | None = Field(None, alias="nextPageToken")
    errors_count: int = Field(..., alias="errorsCount")
    drafts_created: int = Field(0, alias="draftsCreated")


class RunListResponse(BaseModel):
    runs: list[dict[str, Any]]


class SummaryListResponse(BaseModel):
    summaries: list[dict[str, Any]]


class DraftListResponse(BaseModel):
    drafts: list[dict[str, Any]]


class DraftActionResponse(BaseModel):
    ok: bool = True
    draft: dict[str, Any]


class SendApprovedResponse(BaseModel):
    ok: bool = True
    sent: int = Field(..., description="Drafts delivered and marked sent")
    errors: list[dict[str, str]] = Field(default_factory=list, description="Per-draft failures {id, error}")
