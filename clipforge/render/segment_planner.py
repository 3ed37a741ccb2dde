"""Split a multi-track timeline into independently renderable segments.

Segment boundaries are the sorted, de-duplicated union of {0, duration}
and every clip's start/end (overlay ends capped at the composition duration).
Between two consecutive boundaries the set of active clips per track is
constant, so each segment can be rendered on its own and the results
concatenated with a stream copy.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from clipforge.schemas.timeline import TimelineClip, Track

logger = logging.getLogger(__name__)

# Boundaries are rounded to microseconds so float noise does not create
# zero-length segments.
TIME_PRECISION = 6


@dataclass(frozen=True)
class Segment:
    """A time interval plus the zero-or-one clip active per track."""

    index: int
    start_time: float
    end_time: float
    clips: tuple[Optional[TimelineClip], ...]

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def active_track_indices(self) -> list[int]:
        return [i for i, clip in enumerate(self.clips) if clip is not None]

    @property
    def is_empty(self) -> bool:
        return not self.active_track_indices

    def clip_for_track(self, track_index: int) -> Optional[TimelineClip]:
        if track_index >= len(self.clips):
            return None
        return self.clips[track_index]

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "index": self.index,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "clips": [clip.id if clip else None for clip in self.clips],
        }


def compute_composition_duration(tracks: list[Track], fallback: float = 0.0) -> float:
    """Composition duration is the latest end time on the base track only.

    Overlay tracks never extend the composition. When the base track is
    empty the timeline's own duration is used.
    """
    if not tracks or not tracks[0].clips:
        return fallback
    return max(clip.end_time for clip in tracks[0].clips)


def effective_end_time(clip: TimelineClip, duration: float) -> float:
    """Clip end capped at the composition duration (the clip is not mutated)."""
    return min(clip.end_time, duration)


def is_clip_active(clip: TimelineClip, start_time: float, end_time: float, duration: float) -> bool:
    """A clip is active in [start_time, end_time) iff the intervals overlap.

    Clip times are rounded like the boundaries, so a clip ending at float
    noise past a boundary is not active in the next segment.
    """
    clip_start = round(clip.start_time, TIME_PRECISION)
    clip_end = round(effective_end_time(clip, duration), TIME_PRECISION)
    return clip_start < end_time and clip_end > start_time


def collect_boundaries(tracks: list[Track], duration: float) -> list[float]:
    """Sorted, de-duplicated boundary timestamps within [0, duration]."""
    points = {0.0, round(duration, TIME_PRECISION)}
    for track in tracks:
        for clip in track.clips:
            start = round(clip.start_time, TIME_PRECISION)
            end = round(effective_end_time(clip, duration), TIME_PRECISION)
            if 0.0 <= start < duration:
                points.add(start)
            if 0.0 < end <= duration:
                points.add(end)
    return sorted(points)


def build_segments(tracks: list[Track], duration: float) -> list[Segment]:
    """Build the ordered, gap-free, non-overlapping segment list covering [0, duration).

    Args:
        tracks: Video tracks in order; index 0 is the base track
        duration: Composition duration in seconds

    Returns:
        Segments in increasing time order. Output is deterministic for
        identical input.
    """
    if duration <= 0:
        return []

    boundaries = collect_boundaries(tracks, duration)
    segments: list[Segment] = []

    for start_time, end_time in zip(boundaries, boundaries[1:]):
        if end_time <= start_time:
            continue

        active: list[Optional[TimelineClip]] = []
        for track in tracks:
            # Clips within a track never overlap, so the first match is the only one.
            match = next(
                (c for c in track.clips if is_clip_active(c, start_time, end_time, duration)),
                None,
            )
            active.append(match)

        segments.append(
            Segment(
                index=len(segments),
                start_time=start_time,
                end_time=end_time,
                clips=tuple(active),
            )
        )

    logger.info(
        f"[PLAN] {len(segments)} segments over {duration:.3f}s: "
        f"{[(round(s.start_time, 3), round(s.end_time, 3)) for s in segments]}"
    )
    return segments
