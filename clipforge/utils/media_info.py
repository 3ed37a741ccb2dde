"""Media file information utilities using FFprobe."""

import asyncio
import json
import logging
import subprocess
from dataclasses import dataclass

from clipforge.config import get_settings
from clipforge.exceptions import ProbeError, ProcessExitError, ProcessSpawnError

logger = logging.getLogger(__name__)


def _get_settings():
    """Get settings lazily to avoid import issues in tests."""
    return get_settings()


@dataclass(frozen=True)
class MediaInfo:
    """Probe result for one media file."""

    duration: float
    width: int
    height: int
    fps: float
    has_audio: bool
    codec: str | None = None
    audio_codec: str | None = None
    sample_rate: int | None = None
    channels: int | None = None

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "duration": self.duration,
            "width": self.width,
            "height": self.height,
            "fps": self.fps,
            "has_audio": self.has_audio,
            "codec": self.codec,
            "audio_codec": self.audio_codec,
            "sample_rate": self.sample_rate,
            "channels": self.channels,
        }


def parse_frame_rate(frame_rate: str | None) -> float:
    """Parse an ffprobe rate string such as "30000/1001" into frames per second."""
    if not frame_rate or frame_rate == "0/0":
        return 0.0
    if "/" in frame_rate:
        num, den = frame_rate.split("/", 1)
        try:
            denominator = float(den)
            return float(num) / denominator if denominator else 0.0
        except ValueError:
            return 0.0
    try:
        return float(frame_rate)
    except ValueError:
        return 0.0


def _run_ffprobe(file_path: str, *args) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = _get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=settings.probe_timeout_s
        )
    except FileNotFoundError as e:
        raise ProcessSpawnError(settings.ffprobe_path, str(e)) from e
    except subprocess.TimeoutExpired as e:
        raise ProbeError(f"ffprobe timed out after {settings.probe_timeout_s}s: {file_path}") from e

    if result.returncode != 0:
        raise ProcessExitError(result.returncode, result.stderr, description=f"ffprobe ({file_path})")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise ProbeError(f"Failed to parse ffprobe output for {file_path}: {e}") from e


def probe_media(file_path: str) -> MediaInfo:
    """
    Read duration, resolution, frame rate, codec and audio presence.

    Args:
        file_path: Path to media file

    Returns:
        MediaInfo for the file

    Raises:
        ProcessSpawnError: If ffprobe cannot be launched
        ProcessExitError: If ffprobe exits non-zero
        ProbeError: If the output has no video stream or cannot be parsed
    """
    data = _run_ffprobe(file_path, "-show_format", "-show_streams")
    streams = data.get("streams", [])

    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)

    if video_stream is None:
        raise ProbeError(f"No video stream found in: {file_path}")

    format_info = data.get("format", {})
    try:
        duration = float(format_info.get("duration") or video_stream.get("duration") or 0)
    except (TypeError, ValueError):
        duration = 0.0

    fps = parse_frame_rate(video_stream.get("r_frame_rate")) or parse_frame_rate(
        video_stream.get("avg_frame_rate")
    )

    info = MediaInfo(
        duration=duration,
        width=int(video_stream.get("width") or 0),
        height=int(video_stream.get("height") or 0),
        fps=fps,
        has_audio=audio_stream is not None,
        codec=video_stream.get("codec_name"),
        audio_codec=audio_stream.get("codec_name") if audio_stream else None,
        sample_rate=int(audio_stream.get("sample_rate", 0)) or None if audio_stream else None,
        channels=audio_stream.get("channels") if audio_stream else None,
    )
    logger.debug(f"[PROBE] {file_path}: {info}")
    return info


async def probe_media_async(file_path: str) -> MediaInfo:
    """Run probe_media in a worker thread so the event loop stays free."""
    return await asyncio.to_thread(probe_media, file_path)


def check_ffmpeg_availability() -> bool:
    """Return True when both ffmpeg and ffprobe can be launched."""
    settings = _get_settings()
    for binary in (settings.ffmpeg_path, settings.ffprobe_path):
        try:
            result = subprocess.run(
                [binary, "-version"], capture_output=True, text=True, timeout=10
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"[PROBE] {binary} not available: {e}")
            return False
        if result.returncode != 0:
            logger.warning(f"[PROBE] {binary} -version exited with {result.returncode}")
            return False
    return True
