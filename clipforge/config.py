import json
from functools import lru_cache

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "ClipForge Export API"
    app_version: str = "0.1.0"
    git_hash: str = "unknown"  # Set via GIT_HASH env var at build time

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:5173,http://localhost:3000"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from pipe/comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        if "|" in v:
            return [origin.strip() for origin in v.split("|") if origin.strip()]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    probe_timeout_s: int = 30

    # Per-export work directories
    export_temp_root: str = ""  # empty = system temp dir
    export_temp_prefix: str = "clipforge_export_"
    export_output_dir: str = "exports"  # used when a request gives no output path
    export_history_limit: int = 100  # finished exports kept for status queries

    # Intermediate format (must be identical across segments for stream-copy concat)
    render_video_codec: str = "libx264"
    render_audio_codec: str = "aac"
    render_pixel_format: str = "yuv420p"
    render_audio_sample_rate: int = 48000
    render_audio_channels: int = 2
    gap_fill_color: str = "black"

    # Overlay placement used when a track has no explicit position
    default_overlay_x: float = 0.5
    default_overlay_y: float = 0.5
    default_overlay_scale: float = 0.25


@lru_cache
def get_settings() -> Settings:
    return Settings()
