from clipforge.schemas.envelope import ErrorInfo, ErrorLocation, ErrorResponse
from clipforge.schemas.exports import ExportCreateRequest, ExportJobResponse
from clipforge.schemas.timeline import (
    ExportSettings,
    OverlayPosition,
    Timeline,
    TimelineClip,
    Track,
    VideoClip,
)

__all__ = [
    "ErrorInfo",
    "ErrorLocation",
    "ErrorResponse",
    "ExportCreateRequest",
    "ExportJobResponse",
    "ExportSettings",
    "OverlayPosition",
    "Timeline",
    "TimelineClip",
    "Track",
    "VideoClip",
]
