"""Timeline, clip and export-settings schemas consumed by the export engine.

Times are in seconds (float). Field names are snake_case; camelCase aliases
are accepted so editor payloads can be passed through unchanged.
"""

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

RESOLUTION_PRESETS: dict[str, tuple[int, int]] = {
    "720p": (1280, 720),
    "1080p": (1920, 1080),
    "1440p": (2560, 1440),
    "2160p": (3840, 2160),
}

_EXPLICIT_RESOLUTION = re.compile(r"^(\d+)x(\d+)$")


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VideoClip(_Schema):
    """A source media reference owned by the media library."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    file_path: str
    duration: float
    width: int = 0
    height: int = 0
    fps: float = 0
    name: str = ""


class OverlayPosition(_Schema):
    """Overlay placement as fractions of the canvas.

    x/y locate the overlay's center; scale is the fraction of canvas width
    the overlay occupies. Height follows the overlay source's aspect ratio.
    """

    x: float = Field(default=0.5, ge=0.0, le=1.0)
    y: float = Field(default=0.5, ge=0.0, le=1.0)
    scale: float = Field(default=0.25, gt=0.0, le=1.0)


class TimelineClip(_Schema):
    """Placement of a VideoClip on a track.

    Occupies [start_time, end_time) on the timeline and plays the source
    window [trim_start, trim_end).
    """

    id: str
    video_clip_id: str
    start_time: float
    end_time: float
    trim_start: float = 0.0
    trim_end: float
    original_duration: float | None = None
    track_id: str | None = None

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def trimmed_duration(self) -> float:
        return self.trim_end - self.trim_start

    @property
    def is_trimmed(self) -> bool:
        if self.original_duration is None:
            return False
        return self.trim_start > 0 or self.trim_end < self.original_duration


class Track(_Schema):
    id: str
    name: str = ""
    kind: Literal["video", "audio"] = "video"
    muted: bool = False
    volume: float = Field(default=1.0, ge=0.0, le=1.0)
    overlay_position: OverlayPosition | None = None
    clips: list[TimelineClip] = Field(default_factory=list)


class Timeline(_Schema):
    duration: float = 0.0
    tracks: list[Track] = Field(default_factory=list)

    def video_tracks(self) -> list[Track]:
        """Video tracks in timeline order; index 0 is the base track."""
        return [track for track in self.tracks if track.kind == "video"]


class ExportSettings(_Schema):
    """Opaque export settings chosen by the caller.

    resolution: "720p" | "1080p" | "1440p" | "2160p" | "WIDTHxHEIGHT" | "source"
    video_bitrate / audio_bitrate: kbps (video 0 = uncapped CRF)
    """

    resolution: str = "1080p"
    quality: Literal["low", "medium", "high"] = "high"
    fps: int = Field(default=30, gt=0, le=120)
    video_bitrate: int = Field(default=0, ge=0)
    audio_bitrate: int = Field(default=192, gt=0)
    format: Literal["mp4", "mov", "mkv"] = "mp4"

    @field_validator("resolution")
    @classmethod
    def _check_resolution(cls, value: str) -> str:
        value = value.strip().lower()
        if value == "source" or value in RESOLUTION_PRESETS:
            return value
        match = _EXPLICIT_RESOLUTION.match(value)
        if match and int(match.group(1)) > 0 and int(match.group(2)) > 0:
            return value
        raise ValueError(
            f"resolution must be 'source', one of {sorted(RESOLUTION_PRESETS)}, or WIDTHxHEIGHT"
        )

    def explicit_resolution(self) -> tuple[int, int] | None:
        """Return (width, height) unless the resolution is 'source'."""
        if self.resolution == "source":
            return None
        if self.resolution in RESOLUTION_PRESETS:
            return RESOLUTION_PRESETS[self.resolution]
        width, height = self.resolution.split("x")
        return int(width), int(height)
