import os
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "StoryRender API"
    app_version: str = "0.1.0"
    git_hash: str = "unknown"  # Set via GIT_HASH env var at build time
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:5173,http://localhost:3000"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from pipe/comma-separated string."""
        v = self.cors_origins_raw
        if v.strip() == "*":
            return ["*"]
        # Pipe-separated (for Cloud Run compatibility)
        if "|" in v:
            return [origin.strip() for origin in v.split("|") if origin.strip()]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Render settings
    render_fps: int = 30
    render_video_codec: str = "libx264"
    render_video_preset: str = "ultrafast"
    render_video_crf: int = 23
    render_audio_codec: str = "aac"
    render_audio_bitrate: str = "192k"
    render_audio_sample_rate: int = 44100
    render_default_width: int = 1280
    render_default_height: int = 720

    # Segment timing
    render_crossfade_s: float = 0.5
    render_default_segment_s: float = 3.0
    # Word timings are rescaled only when measured and estimated lengths diverge beyond this
    render_timing_tolerance_s: float = 0.05
    # Narration clarity boost applied after resampling
    render_narration_gain: float = 1.5

    # Captions
    caption_merge_threshold_s: float = 1.0

    # Job storage and retention
    render_storage_path: str = "/tmp/storyrender"
    render_retention_s: int = 3600
    render_sweep_interval_s: float = 300
    # 0 = one worker per CPU
    render_max_workers: int = 0
    render_shutdown_grace_s: float = 30.0

    # Timeouts (seconds)
    render_encode_timeout_s: float = 1800.0
    render_probe_timeout_s: float = 30.0
    asset_fetch_timeout_s: float = 60.0
    asset_max_bytes: int = 500 * 1024 * 1024
    # Accept server-local paths as media references (development only)
    asset_allow_local_files: bool = False

    @property
    def worker_count(self) -> int:
        if self.render_max_workers > 0:
            return self.render_max_workers
        return os.cpu_count() or 1


@lru_cache
def get_settings() -> Settings:
    return Settings()
