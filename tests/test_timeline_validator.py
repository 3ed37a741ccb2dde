"""Tests for pre-flight timeline validation."""

import os

import pytest

from clipforge.exceptions import ValidationError
from clipforge.schemas.timeline import Timeline, TimelineClip, Track
from clipforge.services.timeline_validator import TimelineValidator, validate_timeline


class TestTrackChecks:
    """Tests for track-level checks."""

    def test_no_tracks(self, source_clips):
        with pytest.raises(ValidationError) as exc_info:
            validate_timeline(Timeline(tracks=[]), source_clips)
        assert exc_info.value.code == "NO_VIDEO_TRACKS"

    def test_only_audio_tracks(self, source_clips):
        """Test that audio tracks do not count as video tracks."""
        timeline = Timeline(tracks=[Track(id="a1", kind="audio")])
        with pytest.raises(ValidationError) as exc_info:
            validate_timeline(timeline, source_clips)
        assert exc_info.value.code == "NO_VIDEO_TRACKS"

    def test_no_clips(self, source_clips, make_timeline):
        with pytest.raises(ValidationError) as exc_info:
            validate_timeline(make_timeline([], []), source_clips)
        assert exc_info.value.code == "NO_CLIPS"
        assert exc_info.value.status_code == 400


class TestClipChecks:
    """Tests for per-clip checks, each identifying the offending clip."""

    def test_valid_timeline(self, source_clips, make_clip, make_timeline):
        timeline = make_timeline(
            [make_clip("c1", "screen", 0, 10)],
            [make_clip("c2", "webcam", 2, 8)],
        )
        validate_timeline(timeline, source_clips)

    def test_unknown_source(self, source_clips, make_clip, make_timeline):
        timeline = make_timeline([make_clip("c1", "missing", 0, 5)])
        with pytest.raises(ValidationError) as exc_info:
            validate_timeline(timeline, source_clips)
        error = exc_info.value
        assert error.code == "SOURCE_CLIP_NOT_FOUND"
        assert error.clip_id == "c1"
        assert error.track_id == "track0"
        assert error.location is not None and error.location.clip_id == "c1"

    def test_unreadable_source_file(self, source_clips, media_dir, make_clip, make_timeline):
        os.remove(media_dir / "webcam.mp4")
        timeline = make_timeline(
            [make_clip("c1", "screen", 0, 10)],
            [make_clip("c2", "webcam", 0, 5)],
        )
        with pytest.raises(ValidationError) as exc_info:
            validate_timeline(timeline, source_clips)
        assert exc_info.value.code == "SOURCE_FILE_UNREADABLE"
        assert exc_info.value.track_id == "track1"
        assert exc_info.value.clip_id == "c2"

    def test_negative_trim_start(self, source_clips, make_timeline):
        clip = TimelineClip(id="c1", video_clip_id="screen", start_time=0, end_time=5, trim_start=-1, trim_end=4)
        with pytest.raises(ValidationError) as exc_info:
            validate_timeline(make_timeline([clip]), source_clips)
        assert exc_info.value.code == "INVALID_TRIM_START"

    def test_trim_end_not_after_start(self, source_clips, make_timeline):
        clip = TimelineClip(id="c1", video_clip_id="screen", start_time=0, end_time=5, trim_start=5, trim_end=5)
        with pytest.raises(ValidationError) as exc_info:
            validate_timeline(make_timeline([clip]), source_clips)
        assert exc_info.value.code == "INVALID_TRIM_END"

    def test_trim_end_past_source(self, source_clips, make_timeline):
        """Test that trimming past the source duration is rejected (broll is 30s)."""
        clip = TimelineClip(id="c1", video_clip_id="broll", start_time=0, end_time=31, trim_start=0, trim_end=31)
        with pytest.raises(ValidationError) as exc_info:
            validate_timeline(make_timeline([clip]), source_clips)
        assert exc_info.value.code == "TRIM_EXCEEDS_SOURCE"

    def test_trim_end_equal_to_source_is_valid(self, source_clips, make_timeline):
        clip = TimelineClip(id="c1", video_clip_id="broll", start_time=0, end_time=30, trim_start=0, trim_end=30)
        validate_timeline(make_timeline([clip]), source_clips)

    def test_invalid_placement(self, source_clips, make_timeline):
        clip = TimelineClip(id="c1", video_clip_id="screen", start_time=5, end_time=5, trim_start=0, trim_end=5)
        with pytest.raises(ValidationError) as exc_info:
            validate_timeline(make_timeline([clip]), source_clips)
        assert exc_info.value.code == "INVALID_PLACEMENT"

    def test_first_violation_wins(self, source_clips, make_clip, make_timeline):
        """Test that validation stops at the first bad clip in track order."""
        timeline = make_timeline(
            [make_clip("good", "screen", 0, 5), make_clip("bad1", "nope", 5, 10)],
            [make_clip("bad2", "also-nope", 0, 5)],
        )
        with pytest.raises(ValidationError) as exc_info:
            TimelineValidator(timeline, source_clips).validate()
        assert exc_info.value.clip_id == "bad1"

    def test_error_info(self, source_clips, make_clip, make_timeline):
        """Test that the API error body carries code, location and fix."""
        timeline = make_timeline([make_clip("c1", "missing", 0, 5)])
        with pytest.raises(ValidationError) as exc_info:
            validate_timeline(timeline, source_clips)

        info = exc_info.value.to_error_info()
        assert info.code == "SOURCE_CLIP_NOT_FOUND"
        assert info.retryable is False
        assert info.suggested_fix
        assert info.location.track_id == "track0"
