"""
Tests for media info extraction.

Test cases:
1. Parse ffprobe JSON into MediaInfo
2. Detect files without audio
3. Map ffprobe failures onto export errors
4. Real probes against generated media (requires ffmpeg)
"""

import json
import subprocess
from pathlib import Path

import pytest

from clipforge.exceptions import ProbeError, ProcessExitError, ProcessSpawnError
from clipforge.utils import media_info
from clipforge.utils.media_info import (
    check_ffmpeg_availability,
    parse_frame_rate,
    probe_media,
    probe_media_async,
)

VIDEO_STREAM = {
    "codec_type": "video",
    "codec_name": "h264",
    "width": 1920,
    "height": 1080,
    "r_frame_rate": "30000/1001",
}
AUDIO_STREAM = {
    "codec_type": "audio",
    "codec_name": "aac",
    "sample_rate": "48000",
    "channels": 2,
}


def _fake_run(payload: dict | None = None, returncode: int = 0, stdout: str | None = None, stderr: str = ""):
    def run(cmd, **kwargs):
        out = stdout if stdout is not None else json.dumps(payload or {})
        return subprocess.CompletedProcess(cmd, returncode, stdout=out, stderr=stderr)

    return run


class TestParseFrameRate:
    """Tests for ffprobe rate strings."""

    def test_fraction(self):
        assert parse_frame_rate("30/1") == 30.0

    def test_ntsc(self):
        assert parse_frame_rate("30000/1001") == pytest.approx(29.97, abs=0.01)

    def test_zero_denominator(self):
        assert parse_frame_rate("0/0") == 0.0

    def test_plain_number_and_garbage(self):
        assert parse_frame_rate("25") == 25.0
        assert parse_frame_rate("abc") == 0.0
        assert parse_frame_rate(None) == 0.0


class TestProbeMedia:
    """Tests for probe_media with a mocked ffprobe."""

    def test_video_with_audio(self, monkeypatch):
        """Test that all fields are read from format and stream entries."""
        payload = {"format": {"duration": "12.5"}, "streams": [VIDEO_STREAM, AUDIO_STREAM]}
        monkeypatch.setattr(media_info.subprocess, "run", _fake_run(payload))

        info = probe_media("/media/screen.mp4")

        assert info.duration == 12.5
        assert (info.width, info.height) == (1920, 1080)
        assert info.fps == pytest.approx(29.97, abs=0.01)
        assert info.has_audio is True
        assert info.codec == "h264"
        assert info.audio_codec == "aac"
        assert info.sample_rate == 48000
        assert info.channels == 2

    def test_video_without_audio(self, monkeypatch):
        """Test that a file with only a video stream reports has_audio False."""
        payload = {"format": {"duration": "3.0"}, "streams": [VIDEO_STREAM]}
        monkeypatch.setattr(media_info.subprocess, "run", _fake_run(payload))

        info = probe_media("/media/storyboard.mp4")

        assert info.has_audio is False
        assert info.audio_codec is None

    def test_no_video_stream(self, monkeypatch):
        """Test that audio-only files are rejected."""
        payload = {"format": {"duration": "3.0"}, "streams": [AUDIO_STREAM]}
        monkeypatch.setattr(media_info.subprocess, "run", _fake_run(payload))

        with pytest.raises(ProbeError):
            probe_media("/media/music.m4a")

    def test_nonzero_exit(self, monkeypatch):
        """Test that ffprobe failures become ProcessExitError with stderr."""
        monkeypatch.setattr(
            media_info.subprocess, "run", _fake_run(returncode=1, stderr="moov atom not found")
        )

        with pytest.raises(ProcessExitError) as exc_info:
            probe_media("/media/broken.mp4")
        assert exc_info.value.returncode == 1
        assert "moov atom not found" in exc_info.value.message

    def test_missing_binary(self, monkeypatch):
        """Test that a missing ffprobe binary becomes ProcessSpawnError."""

        def run(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr(media_info.subprocess, "run", run)

        with pytest.raises(ProcessSpawnError) as exc_info:
            probe_media("/media/screen.mp4")
        assert exc_info.value.code == "ENCODER_UNAVAILABLE"

    def test_invalid_json(self, monkeypatch):
        monkeypatch.setattr(media_info.subprocess, "run", _fake_run(stdout="not json"))

        with pytest.raises(ProbeError):
            probe_media("/media/screen.mp4")

    def test_timeout(self, monkeypatch):
        def run(cmd, **kwargs):
            raise subprocess.TimeoutExpired(cmd, 30)

        monkeypatch.setattr(media_info.subprocess, "run", run)

        with pytest.raises(ProbeError):
            probe_media("/media/screen.mp4")

    @pytest.mark.asyncio
    async def test_async_probe(self, monkeypatch):
        """Test that the async wrapper returns the same result."""
        payload = {"format": {"duration": "5"}, "streams": [VIDEO_STREAM]}
        monkeypatch.setattr(media_info.subprocess, "run", _fake_run(payload))

        info = await probe_media_async("/media/screen.mp4")
        assert info.duration == 5.0


class TestFFmpegAvailability:
    """Tests for the encoder availability check."""

    def test_ffmpeg_availability_missing(self, monkeypatch):
        def run(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr(media_info.subprocess, "run", run)
        assert check_ffmpeg_availability() is False

    def test_ffmpeg_availability_ok(self, monkeypatch):
        monkeypatch.setattr(media_info.subprocess, "run", _fake_run(stdout="ffmpeg version 6.1"))
        assert check_ffmpeg_availability() is True


@pytest.mark.requires_ffmpeg
class TestProbeRealMedia:
    """Probe files generated with ffmpeg."""

    def test_generated_with_audio(self, generated_video):
        path: Path = generated_video("tone.mp4", duration=2.0, size="320x240", audio=True)

        info = probe_media(str(path))

        assert (info.width, info.height) == (320, 240)
        assert info.has_audio is True
        assert 1.9 <= info.duration <= 2.2

    def test_generated_without_audio(self, generated_video):
        path: Path = generated_video("silent.mp4", duration=1.0, audio=False)

        assert probe_media(str(path)).has_audio is False
