"""
Pytest fixtures for ClipForge export tests.

Most tests swap ffmpeg for FakeRunner, which records every command and
writes a placeholder output file, and ffprobe for a canned probe table.
Tests that need real encoders are marked @pytest.mark.requires_ffmpeg and
skipped when ffmpeg/ffprobe are not on PATH.
"""

import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Optional

import pytest

from clipforge.exceptions import ProcessExitError
from clipforge.render.ffmpeg_runner import TranscodeResult
from clipforge.schemas.timeline import ExportSettings, Timeline, TimelineClip, Track, VideoClip
from clipforge.utils.media_info import MediaInfo


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


def pytest_collection_modifyitems(config, items):
    """Apply the skip to everything marked requires_ffmpeg."""
    for item in items:
        if "requires_ffmpeg" in item.keywords and not _ffmpeg_available():
            item.add_marker(pytest.mark.skip(reason="ffmpeg/ffprobe not available"))


class FakeRunner:
    """Records ffmpeg commands instead of running them.

    Every successful run writes a small placeholder at the output path
    (always the last argument). ``fail_when`` decides per command whether
    to raise ProcessExitError instead.
    """

    def __init__(self, fail_when: Optional[Callable[[list[str], str], bool]] = None):
        self.fail_when = fail_when
        self.commands: list[list[str]] = []
        self.descriptions: list[str] = []
        self.failures: list[str] = []

    async def run(self, cmd, *, description, expected_duration=None, on_progress=None):
        self.commands.append(list(cmd))
        self.descriptions.append(description)
        if self.fail_when is not None and self.fail_when(cmd, description):
            self.failures.append(description)
            raise ProcessExitError(1, "simulated encoder failure", description=description)
        if on_progress is not None:
            on_progress(0.5)
            on_progress(1.0)
        Path(cmd[-1]).write_bytes(b"\x00" * 64)
        return TranscodeResult(output_path=cmd[-1], elapsed_s=0.0)

    def filter_graphs(self) -> list[str]:
        return [cmd[cmd.index("-filter_complex") + 1] for cmd in self.commands if "-filter_complex" in cmd]


class FakeProbe:
    """Async probe returning canned MediaInfo, keyed by file name substring."""

    def __init__(self, audio: Optional[dict[str, bool]] = None, default_audio: bool = True):
        self.audio = audio or {}
        self.default_audio = default_audio
        self.calls: list[str] = []

    async def __call__(self, path: str) -> MediaInfo:
        self.calls.append(path)
        has_audio = self.default_audio
        for key, value in self.audio.items():
            if key in os.path.basename(str(path)):
                has_audio = value
        return MediaInfo(duration=60.0, width=1920, height=1080, fps=30.0, has_audio=has_audio)


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="clipforge_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def media_dir(temp_output_dir) -> Path:
    """Directory of placeholder source files (content is never decoded)."""
    path = temp_output_dir / "media"
    path.mkdir()
    for name in ("screen.mp4", "webcam.mp4", "broll.mp4", "logo.mp4"):
        (path / name).write_bytes(b"\x00" * 128)
    return path


@pytest.fixture
def source_clips(media_dir) -> list[VideoClip]:
    return [
        VideoClip(id="screen", file_path=str(media_dir / "screen.mp4"), duration=60.0, width=1920, height=1080),
        VideoClip(id="webcam", file_path=str(media_dir / "webcam.mp4"), duration=60.0, width=1280, height=720),
        VideoClip(id="broll", file_path=str(media_dir / "broll.mp4"), duration=30.0, width=1920, height=1080),
        VideoClip(id="logo", file_path=str(media_dir / "logo.mp4"), duration=30.0, width=400, height=400),
    ]


def make_clip(clip_id: str, source_id: str, start: float, end: float, trim_start: float = 0.0) -> TimelineClip:
    return TimelineClip(
        id=clip_id,
        video_clip_id=source_id,
        start_time=start,
        end_time=end,
        trim_start=trim_start,
        trim_end=trim_start + (end - start),
    )


def make_timeline(*track_clips: list[TimelineClip], duration: float = 0.0) -> Timeline:
    tracks = [
        Track(id=f"track{i}", name=f"Track {i}", clips=clips)
        for i, clips in enumerate(track_clips)
    ]
    return Timeline(duration=duration, tracks=tracks)


@pytest.fixture
def export_settings() -> ExportSettings:
    return ExportSettings(resolution="720p", quality="low", fps=30)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def export_temp_root(temp_output_dir, monkeypatch) -> Path:
    """Point per-export work directories at an inspectable location."""
    from clipforge.config import get_settings

    root = temp_output_dir / "work"
    root.mkdir()
    monkeypatch.setattr(get_settings(), "export_temp_root", str(root))
    return root


@pytest.fixture
def generated_video(temp_output_dir) -> Callable[..., Path]:
    """Generate a real test video with ffmpeg lavfi sources (requires_ffmpeg tests only)."""

    def _make(name: str, duration: float = 2.0, size: str = "320x240", audio: bool = True) -> Path:
        output = temp_output_dir / name
        cmd = ["ffmpeg", "-y", "-f", "lavfi", "-i", f"testsrc=size={size}:rate=30:duration={duration}"]
        if audio:
            cmd.extend(["-f", "lavfi", "-i", f"sine=frequency=440:duration={duration}"])
        cmd.extend(["-c:v", "libx264", "-pix_fmt", "yuv420p"])
        if audio:
            cmd.extend(["-c:a", "aac", "-shortest"])
        cmd.append(str(output))
        subprocess.run(cmd, capture_output=True, check=True)
        return output

    return _make


@pytest.fixture(name="make_clip")
def make_clip_fixture() -> Callable[..., TimelineClip]:
    return make_clip


@pytest.fixture(name="make_timeline")
def make_timeline_fixture() -> Callable[..., Timeline]:
    return make_timeline


@pytest.fixture
def runner_factory() -> type[FakeRunner]:
    return FakeRunner


@pytest.fixture
def probe_factory() -> type[FakeProbe]:
    return FakeProbe
