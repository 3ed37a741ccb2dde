from typing import Any

from pydantic import BaseModel, Field


class ErrorLocation(BaseModel):
    field: str | None = None
    track_id: str | None = None
    clip_id: str | None = None
    segment_index: int | None = None


class SuggestedAction(BaseModel):
    action: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class ErrorInfo(BaseModel):
    code: str
    message: str
    location: ErrorLocation | None = None
    retryable: bool = False
    suggested_fix: str | None = None  # Human-readable fix suggestion
    suggested_actions: list[SuggestedAction] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: ErrorInfo
