"""
OpenPhone API request models.
Used by routes for input validation; field names follow the camelCase
JSON the review UI sends.
"""

from datetime import date
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RunRequest(BaseModel):
    """Request for one OpenPhone cleanup invocation."""

    model_config = ConfigDict(populate_by_name=True)

    start_date: date = Field(..., alias="startDate", description="First day of the window (YYYY-MM-DD)")
    end_date: date = Field(..., alias="endDate", description="Last day of the window (YYYY-MM-DD)")
    resume_run_id: UUID | None = Field(
        default=None, alias="resumeRunId", description="Paused or failed run to continue"
    )

    @model_validator(mode="after")
    def _check_window(self):
        if self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self


class ApproveDraftRequest(BaseModel):
    """Approve a pending draft, optionally replacing its text."""

    model_config = ConfigDict(populate_by_name=True)

    draft_id: str = Field(..., alias="draftId", min_length=1)
    edit: str | None = Field(default=None, description="Replacement draft text")


class RejectDraftRequest(BaseModel):
    id: str = Field(..., min_length=1, description="Draft id")
