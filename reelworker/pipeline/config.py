"""
Pipeline settings.

Every knob is read from the environment once (``PipelineSettings.from_env()``)
and passed into the components that need it. Poll interval and ceiling are
fixed here and are not tunable per call.
"""

import os
import tempfile
from dataclasses import dataclass, field


# ── Defaults ─────────────────────────────────────────────────────────────────

SEGMENT_SECONDS = 8
MIN_DURATION_SECONDS = 8
MAX_DURATION_SECONDS = 64

POLL_INTERVAL = 10  # seconds
MAX_POLL_ATTEMPTS = 60  # 10 minutes max

DEFAULT_CROSSFADE_DURATION = 0.5
LAST_FRAME_EPSILON = 0.1

RESOLUTIONS = {
    "16:9": (1280, 720),
    "9:16": (720, 1280),
}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class PipelineSettings:
    # Generative services
    gemini_api_key: str = ""
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    analysis_model: str = "gemini-2.5-flash"
    text_model: str = "gemini-2.5-flash"
    image_model: str = "gemini-2.0-flash-preview-image-generation"
    video_model: str = "veo-3.0-fast-generate-preview"
    person_generation: str = "allow_adult"

    # Poller
    poll_interval_seconds: float = POLL_INTERVAL
    max_poll_attempts: int = MAX_POLL_ATTEMPTS

    # HTTP timeouts (seconds)
    api_timeout: float = 120.0
    download_timeout: float = 300.0

    # Object storage (S3-compatible)
    storage_endpoint_url: str = ""
    storage_access_key_id: str = ""
    storage_secret_access_key: str = ""
    storage_bucket: str = "assets"
    storage_region: str = "auto"
    storage_public_url: str = ""
    storage_make_public: bool = False

    # Run records
    supabase_url: str = ""
    supabase_key: str = ""
    records_table: str = "videos"
    # Finished runs kept in the in-memory status table
    max_tracked_runs: int = 500

    # Media processing
    scratch_dir: str = field(default_factory=tempfile.gettempdir)
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    assembly_mode: str = "cut"
    crossfade_duration: float = DEFAULT_CROSSFADE_DURATION
    output_fps: int = 24
    encoder_preset: str = "fast"
    encoder_crf: int = 23
    audio_bitrate: str = "128k"
    frame_format: str = "png"
    frame_extraction_timeout: float = 120.0

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY", ""),
            gemini_api_base=os.getenv("GEMINI_API_BASE", cls.gemini_api_base),
            analysis_model=os.getenv("GEMINI_ANALYSIS_MODEL", cls.analysis_model),
            text_model=os.getenv("GEMINI_TEXT_MODEL", cls.text_model),
            image_model=os.getenv("GEMINI_IMAGE_MODEL", cls.image_model),
            video_model=os.getenv("VEO_MODEL", cls.video_model),
            person_generation=os.getenv("VEO_PERSON_GENERATION", cls.person_generation),
            poll_interval_seconds=_env_float("VEO_POLL_INTERVAL", POLL_INTERVAL),
            max_poll_attempts=_env_int("VEO_MAX_POLL_ATTEMPTS", MAX_POLL_ATTEMPTS),
            api_timeout=_env_float("API_TIMEOUT", cls.api_timeout),
            download_timeout=_env_float("DOWNLOAD_TIMEOUT", cls.download_timeout),
            storage_endpoint_url=os.getenv("STORAGE_ENDPOINT_URL", ""),
            storage_access_key_id=os.getenv("STORAGE_ACCESS_KEY_ID", ""),
            storage_secret_access_key=os.getenv("STORAGE_SECRET_ACCESS_KEY", ""),
            storage_bucket=os.getenv("STORAGE_BUCKET", cls.storage_bucket),
            storage_region=os.getenv("STORAGE_REGION", cls.storage_region),
            storage_public_url=os.getenv("STORAGE_PUBLIC_URL", ""),
            storage_make_public=_env_bool("STORAGE_MAKE_PUBLIC", False),
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""),
            records_table=os.getenv("RECORDS_TABLE", cls.records_table),
            max_tracked_runs=_env_int("MAX_TRACKED_RUNS", cls.max_tracked_runs),
            scratch_dir=os.getenv("SCRATCH_DIR") or tempfile.gettempdir(),
            ffmpeg_path=os.getenv("FFMPEG_PATH", cls.ffmpeg_path),
            ffprobe_path=os.getenv("FFPROBE_PATH", cls.ffprobe_path),
            assembly_mode=os.getenv("ASSEMBLY_MODE", cls.assembly_mode),
            crossfade_duration=_env_float("CROSSFADE_DURATION", DEFAULT_CROSSFADE_DURATION),
            output_fps=_env_int("OUTPUT_FPS", cls.output_fps),
            encoder_preset=os.getenv("ENCODER_PRESET", cls.encoder_preset),
            encoder_crf=_env_int("ENCODER_CRF", cls.encoder_crf),
            frame_format=os.getenv("FRAME_FORMAT", cls.frame_format),
            frame_extraction_timeout=_env_float(
                "FRAME_EXTRACTION_TIMEOUT", cls.frame_extraction_timeout
            ),
        )


def target_resolution(aspect_ratio: str) -> tuple[int, int]:
    """Output (width, height) for an aspect ratio, defaulting to landscape."""
    return RESOLUTIONS.get(aspect_ratio, RESOLUTIONS["16:9"])
