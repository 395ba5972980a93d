import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Reelsmith Export API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

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
        # Pipe-separated (for Cloud Run compatibility)
        if "|" in v:
            return [origin.strip() for origin in v.split("|") if origin.strip()]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Job engine
    max_concurrent_jobs: int = 3
    encode_timeout_s: float = 600
    # Cap on captured encoder stdout/stderr (oldest bytes are dropped)
    max_output_buffer_bytes: int = 50 * 1024 * 1024
    work_dir: str = "/tmp/reelsmith-jobs"
    # Finished job status is kept this long for polling clients
    job_status_ttl_s: int = 3600
    # Outputs left behind by a failed upload are swept after this
    output_retention_s: int = 72 * 3600
    retention_sweep_interval_s: int = 600

    # Asset fetching
    fetch_timeout_s: float = 120
    fetch_connect_timeout_s: float = 30
    fetch_max_redirects: int = 5
    fetch_user_agent: str = "Reelsmith-Export/0.1"
    asset_cache_enabled: bool = True
    asset_cache_dir: str = "/tmp/reelsmith-cache"
    asset_cache_ttl_s: int = 3600

    # Render settings
    render_output_width: int = 1920
    render_output_height: int = 1080
    render_fps: int = 30
    render_audio_bitrate: str = "192k"
    render_audio_sample_rate: int = 44100
    image_display_duration_s: float = 5.0

    # Timeline editing
    timeline_min_duration_s: float = 60.0
    snap_threshold_s: float = 0.5
    history_depth: int = 50

    # Google Cloud Storage
    gcs_bucket_name: str = "reelsmith-exports"
    gcs_project_id: str = ""

    # Local storage for development (when GCS is not configured)
    use_local_storage: bool = True  # Set to False in production
    local_storage_path: str = "/tmp/reelsmith-storage"
    local_storage_base_url: str = "http://localhost:8000/files"

    # Result publishing
    storage_public_read: bool = False
    signed_url_expiry_s: int = 7 * 24 * 3600
    export_key_prefix: str = "exports"

    # Completion callback
    callback_secret: str = ""
    callback_timeout_s: float = 10


@lru_cache
def get_settings() -> Settings:
    return Settings()
