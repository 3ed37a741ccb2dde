from datetime import datetime

from pydantic import BaseModel, Field

from clipforge.schemas.envelope import ErrorInfo
from clipforge.schemas.timeline import ExportSettings, Timeline, VideoClip


class ExportCreateRequest(BaseModel):
    timeline: Timeline
    clips: list[VideoClip]
    settings: ExportSettings = Field(default_factory=ExportSettings)
    output_path: str | None = None  # defaults to <export_output_dir>/<id>.<format>


class ExportJobResponse(BaseModel):
    id: str
    state: str
    progress: float
    current_stage: str | None
    current_segment: int | None
    segment_count: int
    output_path: str
    output_size: int | None
    error: ErrorInfo | None
    created_at: datetime
    completed_at: datetime | None


class ExportListResponse(BaseModel):
    exports: list[ExportJobResponse]
