"""
Continuity frame extraction.

Pulls one still (first, last or at a timestamp) out of a finished segment
and stores it as a new image artifact. The decode/seek/encode step runs in
an isolated child process; download, upload and scratch cleanup stay in the
calling process.
"""

import logging
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Optional

from PIL import Image

from .config import LAST_FRAME_EPSILON, PipelineSettings
from .errors import FrameExtractionFailed
from .isolation import IsolatedTaskRunner
from .media import MediaToolError, probe, run_ffmpeg
from .models import ArtifactRef, FramePosition
from .storage import ObjectStorage, content_type_for

logger = logging.getLogger(__name__)

FRAME_FORMATS = {"png": "png", "jpg": "jpg", "jpeg": "jpg"}


def resolve_seek(position: FramePosition, duration: float) -> float:
    """Seek time for a frame position; raises ValueError when out of range."""
    if position == "first":
        return 0.0
    if position == "last":
        # seeking to the exact end is unreliable across containers
        return max(0.0, duration - LAST_FRAME_EPSILON)
    seconds = float(position)
    if seconds < 0 or seconds > duration:
        raise ValueError(f"Seek position {seconds}s is outside the video (0–{duration:.2f}s)")
    return seconds


def extract_frame_job(payload: dict) -> dict:
    """
    Isolated job: decode one frame from a local video into an image file.

    Payload keys: video_path, output_path, position, format, ffmpeg_path,
    ffprobe_path.
    """
    video_path = payload["video_path"]
    output_path = payload["output_path"]
    position = payload["position"]

    try:
        if position == "first":
            seek = 0.0
        else:
            info = probe(video_path, payload.get("ffprobe_path", "ffprobe"))
            seek = resolve_seek(position, info.duration)

        args = ["-ss", f"{seek:.3f}", "-i", video_path, "-frames:v", "1"]
        if payload.get("format") == "jpg":
            args += ["-q:v", "2"]
        args.append(output_path)
        run_ffmpeg(args, payload.get("ffmpeg_path", "ffmpeg"))

        out = Path(output_path)
        if not out.exists() or out.stat().st_size == 0:
            raise MediaToolError(f"No frame decoded at {seek:.3f}s")

        with Image.open(out) as img:
            width, height = img.size

        return {
            "success": True,
            "output_path": output_path,
            "seek": seek,
            "width": width,
            "height": height,
            "size_bytes": out.stat().st_size,
        }
    except (MediaToolError, ValueError, OSError) as e:
        return {"success": False, "error": str(e)}


class FrameExtractor:
    def __init__(
        self,
        storage: ObjectStorage,
        settings: PipelineSettings,
        runner: Optional[IsolatedTaskRunner] = None,
    ):
        self._storage = storage
        self._settings = settings
        self._runner = runner or IsolatedTaskRunner()

    async def extract(
        self,
        video: ArtifactRef,
        output_key: str,
        position: FramePosition = "last",
        fmt: Optional[str] = None,
    ) -> ArtifactRef:
        """
        Extract one frame from a stored video and publish it.

        Args:
            video:      The finished segment.
            output_key: Storage key (without extension) for the frame.
            position:   "first", "last" or seconds from the start.
            fmt:        "png" or "jpg"; defaults to settings.frame_format.

        Returns:
            ArtifactRef of the stored frame.

        Raises:
            FrameExtractionFailed: decode, seek or write failed.
            StorageError:          download or upload failed.
        """
        ext = FRAME_FORMATS.get((fmt or self._settings.frame_format).lower())
        if ext is None:
            raise FrameExtractionFailed(f"Unsupported frame format: {fmt}")
        if position not in ("first", "last") and not isinstance(position, (int, float)):
            raise FrameExtractionFailed(f"Invalid frame position: {position!r}")

        scratch = Path(tempfile.mkdtemp(prefix=f"frame-{uuid.uuid4().hex}-", dir=self._settings.scratch_dir))
        try:
            video_path = await self._storage.download_to_file(video.url, scratch / "source.mp4")
            output_path = scratch / f"frame.{ext}"

            result = await self._runner.run(
                extract_frame_job,
                {
                    "video_path": str(video_path),
                    "output_path": str(output_path),
                    "position": position,
                    "format": ext,
                    "ffmpeg_path": self._settings.ffmpeg_path,
                    "ffprobe_path": self._settings.ffprobe_path,
                },
                timeout=self._settings.frame_extraction_timeout,
            )
            if not result.get("success"):
                raise FrameExtractionFailed(
                    f"Frame extraction ({position}) failed for {video.url}: {result.get('error')}"
                )

            key = f"{output_key}.{ext}"
            content_type = content_type_for(key)
            url = await self._storage.upload_file(output_path, key, content_type)
            logger.info(f"Extracted {position} frame at {result['seek']:.2f}s: {url}")

            return ArtifactRef(
                url=url,
                key=key,
                content_type=content_type,
                format=ext,
                width=result.get("width"),
                height=result.get("height"),
                size_bytes=result.get("size_bytes", 0),
            )
        finally:
            shutil.rmtree(scratch, ignore_errors=True)
