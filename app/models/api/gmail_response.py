"""
Gmail API response models.
Serialized by alias so clients get camelCase keys.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TriageResponse(BaseModel):
    """Counters for one Gmail triage invocation."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    run_id: str = Field(..., alias="runId")
    lookback_days: int = Field(..., alias="lookbackDays")
    accounts: int = Field(..., description="Active accounts scanned")
    processed: int
    drafts_created: int = Field(..., alias="draftsCreated")
    skipped_by_rule: int = Field(..., alias="skippedByRule")
    skipped_duplicate: int = Field(..., alias="skippedDuplicate")
    label_errors: int = Field(..., alias="labelErrors")
    errors_count: int = Field(..., alias="errorsCount")


class ActivityResponse(BaseModel):
    """Newest email log rows joined with the inbox address."""

    logs: list[dict[str, Any]]
