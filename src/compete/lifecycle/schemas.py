"""Pydantic response models for the status-update endpoint."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from compete.lifecycle.scheduler import StatusUpdateSummary


class StatusCountsResponse(BaseModel):
    active: int = 0
    upcoming: int = 0
    completed: int = 0


class StatusUpdateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str = "Competition statuses updated successfully"
    counts: StatusCountsResponse | None = None
    activated: int = 0
    completed: int = 0
    force_locked: int = Field(0, alias="forceLocked")
    settlement_retries: int = Field(0, alias="settlementRetries")

    @classmethod
    def from_summary(cls, summary: StatusUpdateSummary) -> StatusUpdateResponse:
        return cls(
            counts=StatusCountsResponse(**summary.counts) if summary.counts is not None else None,
            activated=summary.activated,
            completed=summary.completed,
            force_locked=summary.force_locked,
            settlement_retries=summary.settlement_retries,
        )


class ErrorResponse(BaseModel):
    error: str = "Internal server error"
    details: str | None = None
