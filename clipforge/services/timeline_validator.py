"""Pre-flight timeline validation.

Runs before any subprocess or temp file is created. Checks, in order:
- At least one video track exists
- At least one video track has clips
- Every clip references a known source clip
- Every referenced source file is readable
- Trim bounds: 0 <= trim_start < trim_end <= source duration
- Timeline placement: 0 <= start_time < end_time

The first violation aborts validation with the offending track/clip identified.
"""

import logging
import os

from clipforge.exceptions import ValidationError
from clipforge.schemas.timeline import Timeline, TimelineClip, Track, VideoClip

logger = logging.getLogger(__name__)


class TimelineValidator:
    """Validates a timeline against the resolved source clip set."""

    def __init__(self, timeline: Timeline, clips: list[VideoClip]):
        self.timeline = timeline
        self.clips_by_id = {clip.id: clip for clip in clips}

    def validate(self) -> None:
        """Raise ValidationError on the first violation; return None when exportable."""
        video_tracks = self.timeline.video_tracks()
        if not video_tracks:
            raise ValidationError("No video tracks found on timeline", code="NO_VIDEO_TRACKS")

        if not any(track.clips for track in video_tracks):
            raise ValidationError("No video clips found on timeline", code="NO_CLIPS")

        for track in video_tracks:
            for timeline_clip in track.clips:
                self._check_clip(track, timeline_clip)

        logger.info(
            f"[VALIDATE] Timeline OK: {len(video_tracks)} video tracks, "
            f"{sum(len(t.clips) for t in video_tracks)} clips"
        )

    def _check_clip(self, track: Track, timeline_clip: TimelineClip) -> None:
        source = self.clips_by_id.get(timeline_clip.video_clip_id)
        if source is None:
            raise ValidationError(
                f"Source clip {timeline_clip.video_clip_id} not found",
                code="SOURCE_CLIP_NOT_FOUND",
                track_id=track.id,
                clip_id=timeline_clip.id,
            )

        if not os.path.isfile(source.file_path) or not os.access(source.file_path, os.R_OK):
            raise ValidationError(
                f"Source file not found or unreadable: {source.file_path}",
                code="SOURCE_FILE_UNREADABLE",
                track_id=track.id,
                clip_id=timeline_clip.id,
            )

        if timeline_clip.trim_start < 0:
            raise ValidationError(
                f"Invalid trimStart ({timeline_clip.trim_start}) for clip {timeline_clip.id}",
                code="INVALID_TRIM_START",
                track_id=track.id,
                clip_id=timeline_clip.id,
            )

        if timeline_clip.trim_end <= timeline_clip.trim_start:
            raise ValidationError(
                f"Invalid trimEnd ({timeline_clip.trim_end}) for clip {timeline_clip.id}: "
                f"must be greater than trimStart ({timeline_clip.trim_start})",
                code="INVALID_TRIM_END",
                track_id=track.id,
                clip_id=timeline_clip.id,
            )

        if timeline_clip.trim_end > source.duration:
            raise ValidationError(
                f"trimEnd ({timeline_clip.trim_end}) exceeds clip duration ({source.duration}) "
                f"for clip {timeline_clip.id}",
                code="TRIM_EXCEEDS_SOURCE",
                track_id=track.id,
                clip_id=timeline_clip.id,
            )

        if timeline_clip.start_time < 0 or timeline_clip.end_time <= timeline_clip.start_time:
            raise ValidationError(
                f"Invalid placement [{timeline_clip.start_time}, {timeline_clip.end_time}) "
                f"for clip {timeline_clip.id}",
                code="INVALID_PLACEMENT",
                track_id=track.id,
                clip_id=timeline_clip.id,
            )


def validate_timeline(timeline: Timeline, clips: list[VideoClip]) -> None:
    """Validate a timeline; raises ValidationError on the first violation."""
    TimelineValidator(timeline, clips).validate()
