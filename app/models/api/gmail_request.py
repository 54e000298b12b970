"""
Gmail API request models.
Used by routes for input validation.
"""

from pydantic import BaseModel, ConfigDict, Field


class TriageRequest(BaseModel):
    """Request for one Gmail triage invocation."""

    model_config = ConfigDict(populate_by_name=True)

    lookback_days: int | None = Field(
        default=None,
        alias="lookbackDays",
        ge=1,
        le=90,
        description="Days of INBOX history to scan (defaults to GMAIL_DEFAULT_LOOKBACK_DAYS)",
    )
