"""Encoder parameters shared by every render step.

Every segment file must be byte-compatible for a stream-copy concat:
same codec, resolution, frame rate, pixel format, GOP structure and
audio layout. All commands build their output arguments here.
"""

import logging
from dataclasses import dataclass

from clipforge.config import get_settings
from clipforge.schemas.timeline import ExportSettings, VideoClip

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QualityPreset:
    crf: int
    preset: str


QUALITY_PRESETS: dict[str, QualityPreset] = {
    "low": QualityPreset(crf=28, preset="veryfast"),
    "medium": QualityPreset(crf=23, preset="medium"),
    "high": QualityPreset(crf=18, preset="slow"),
}

# Containers that support moving the moov atom to the front.
FASTSTART_FORMATS = frozenset({"mp4", "mov"})


def even(value: float) -> int:
    """Round down to an even integer (libx264 with yuv420p needs even dimensions)."""
    return max(2, int(value) - int(value) % 2)


@dataclass(frozen=True)
class RenderTarget:
    """Resolved output parameters for one export."""

    width: int
    height: int
    fps: int
    quality: str = "high"
    video_bitrate: int = 0  # kbps, 0 = CRF only
    audio_bitrate: int = 192  # kbps
    format: str = "mp4"
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    pixel_format: str = "yuv420p"
    sample_rate: int = 48000
    channels: int = 2
    gap_color: str = "black"

    @property
    def keyframe_interval(self) -> int:
        """GOP length in frames (two seconds of video)."""
        return self.fps * 2

    @property
    def channel_layout(self) -> str:
        return "mono" if self.channels == 1 else "stereo"

    @classmethod
    def from_settings(cls, export_settings: ExportSettings, width: int, height: int) -> "RenderTarget":
        settings = get_settings()
        return cls(
            width=even(width),
            height=even(height),
            fps=export_settings.fps,
            quality=export_settings.quality,
            video_bitrate=export_settings.video_bitrate,
            audio_bitrate=export_settings.audio_bitrate,
            format=export_settings.format,
            video_codec=settings.render_video_codec,
            audio_codec=settings.render_audio_codec,
            pixel_format=settings.render_pixel_format,
            sample_rate=settings.render_audio_sample_rate,
            channels=settings.render_audio_channels,
            gap_color=settings.gap_fill_color,
        )


def resolve_resolution(
    export_settings: ExportSettings,
    reference_clip: VideoClip | None,
    probed_size: tuple[int, int] | None = None,
) -> tuple[int, int]:
    """Pick the output canvas size.

    Explicit presets and WIDTHxHEIGHT win. "source" uses the reference clip's
    dimensions, then the probed dimensions, then 1080p.
    """
    explicit = export_settings.explicit_resolution()
    if explicit is not None:
        return even(explicit[0]), even(explicit[1])

    if reference_clip is not None and reference_clip.width > 0 and reference_clip.height > 0:
        return even(reference_clip.width), even(reference_clip.height)

    if probed_size is not None and probed_size[0] > 0 and probed_size[1] > 0:
        return even(probed_size[0]), even(probed_size[1])

    logger.warning("[ENCODE] Source resolution unknown, falling back to 1920x1080")
    return 1920, 1080


def video_encode_args(target: RenderTarget) -> list[str]:
    """H.264 output arguments with constant frame rate and fixed keyframe cadence."""
    quality = QUALITY_PRESETS[target.quality]
    args = [
        "-c:v", target.video_codec,
        "-preset", quality.preset,
        "-crf", str(quality.crf),
    ]
    if target.video_bitrate > 0:
        args.extend([
            "-maxrate", f"{target.video_bitrate}k",
            "-bufsize", f"{target.video_bitrate * 2}k",
        ])
    args.extend([
        "-pix_fmt", target.pixel_format,
        "-r", str(target.fps),
        "-g", str(target.keyframe_interval),
        "-keyint_min", str(target.fps),
        "-sc_threshold", "0",
        "-force_key_frames", "expr:gte(t,n_forced*2)",
    ])
    return args


def audio_encode_args(target: RenderTarget) -> list[str]:
    return [
        "-c:a", target.audio_codec,
        "-b:a", f"{target.audio_bitrate}k",
        "-ar", str(target.sample_rate),
        "-ac", str(target.channels),
    ]


def container_args(target: RenderTarget, final: bool = False) -> list[str]:
    """Timestamp and metadata normalization; faststart only on the final file."""
    args = [
        "-avoid_negative_ts", "make_zero",
        "-map_metadata", "-1",
    ]
    if final and target.format in FASTSTART_FORMATS:
        args.extend(["-movflags", "+faststart"])
    return args


def color_source(target: RenderTarget, duration: float, width: int | None = None, height: int | None = None) -> str:
    """lavfi solid-color video source."""
    w = width or target.width
    h = height or target.height
    return f"color=c={target.gap_color}:s={w}x{h}:r={target.fps}:d={duration:.6f}"


def silence_source(target: RenderTarget, duration: float) -> str:
    """lavfi silent audio source."""
    return (
        f"anullsrc=channel_layout={target.channel_layout}:"
        f"sample_rate={target.sample_rate}:d={duration:.6f}"
    )
