"""
Segment assembly — combine an ordered list of clips into the final video.

Two modes:
  cut:       normalize every clip then concat (video, audio) pairs, one encode
  crossfade: normalize then chain xfade / acrossfade across consecutive pairs

A single clip skips the filter graph and is copied through. The ffmpeg run
happens in an isolated child process with no timeout; scratch files are
removed on every exit path.
"""

import logging
import shutil
import tempfile
import time
import uuid
from pathlib import Path
from typing import Optional

from .. import metrics
from .config import PipelineSettings, target_resolution
from .errors import AssemblyFailed, FFmpegProcessingFailed
from .isolation import IsolatedTaskRunner
from .media import MediaToolError, build_concat_graph, build_crossfade_graph, encode_args, probe, run_ffmpeg
from .models import ArtifactRef, AssemblyMode
from .storage import ObjectStorage

logger = logging.getLogger(__name__)


def assemble_job(payload: dict) -> dict:
    """
    Isolated job: build and run the filter graph over local inputs.

    Payload keys: inputs, output_path, mode, width, height, fps, crossfade,
    preset, crf, audio_bitrate, ffmpeg_path, ffprobe_path.
    """
    inputs = payload["inputs"]
    output_path = payload["output_path"]
    ffmpeg_path = payload.get("ffmpeg_path", "ffmpeg")
    ffprobe_path = payload.get("ffprobe_path", "ffprobe")

    try:
        if len(inputs) == 1:
            shutil.copyfile(inputs[0], output_path)
        else:
            infos = [probe(p, ffprobe_path) for p in inputs]
            width, height, fps = payload["width"], payload["height"], payload["fps"]

            if payload["mode"] == AssemblyMode.CROSSFADE.value:
                graph = build_crossfade_graph(infos, width, height, fps, payload["crossfade"])
            else:
                graph = build_concat_graph(infos, width, height, fps)

            args = []
            for p in inputs:
                args += ["-i", p]
            args += ["-filter_complex", ";".join(graph)]
            args += encode_args(payload["preset"], payload["crf"], payload["audio_bitrate"])
            args.append(output_path)
            run_ffmpeg(args, ffmpeg_path)

        final = probe(output_path, ffprobe_path)
        return {
            "success": True,
            "output_path": output_path,
            "duration": final.duration,
            "width": final.width,
            "height": final.height,
            "fps": final.fps,
            "size_bytes": Path(output_path).stat().st_size,
        }
    except (MediaToolError, ValueError, OSError) as e:
        return {"success": False, "error": str(e)}


class SegmentAssembler:
    def __init__(
        self,
        storage: ObjectStorage,
        settings: PipelineSettings,
        runner: Optional[IsolatedTaskRunner] = None,
    ):
        self._storage = storage
        self._settings = settings
        self._runner = runner or IsolatedTaskRunner()

    async def assemble(
        self,
        video_urls: list[str],
        output_key: str,
        mode: AssemblyMode = AssemblyMode.CUT,
        aspect_ratio: str = "16:9",
        crossfade_duration: Optional[float] = None,
    ) -> ArtifactRef:
        """
        Combine clips (in the given order) into one video and store it.

        Raises:
            AssemblyFailed:          no inputs / invalid crossfade.
            FFmpegProcessingFailed:  the graph or encoder failed.
            StorageError:            download or upload failed.
        """
        if not video_urls:
            raise AssemblyFailed("No input videos provided")

        mode = AssemblyMode(mode)
        crossfade = crossfade_duration if crossfade_duration is not None else self._settings.crossfade_duration
        if mode == AssemblyMode.CROSSFADE and crossfade <= 0:
            raise AssemblyFailed(f"Crossfade duration must be positive, got {crossfade}")

        width, height = target_resolution(aspect_ratio)
        started = time.monotonic()

        scratch = Path(tempfile.mkdtemp(prefix=f"assemble-{uuid.uuid4().hex}-", dir=self._settings.scratch_dir))
        try:
            local_inputs = []
            for i, url in enumerate(video_urls):
                logger.info(f"Downloading clip {i + 1}/{len(video_urls)}: {url}")
                path = await self._storage.download_to_file(url, scratch / f"clip_{i}.mp4")
                local_inputs.append(str(path))

            output_path = scratch / "combined.mp4"
            logger.info(f"Assembling {len(local_inputs)} clips ({mode.value}, {width}x{height})")

            result = await self._runner.run(
                assemble_job,
                {
                    "inputs": local_inputs,
                    "output_path": str(output_path),
                    "mode": mode.value,
                    "width": width,
                    "height": height,
                    "fps": self._settings.output_fps,
                    "crossfade": crossfade,
                    "preset": self._settings.encoder_preset,
                    "crf": self._settings.encoder_crf,
                    "audio_bitrate": self._settings.audio_bitrate,
                    "ffmpeg_path": self._settings.ffmpeg_path,
                    "ffprobe_path": self._settings.ffprobe_path,
                },
                timeout=None,
            )
            if not result.get("success"):
                raise FFmpegProcessingFailed(f"FFmpeg processing failed: {result.get('error')}")

            url = await self._storage.upload_file(output_path, output_key, "video/mp4")
            metrics.record_latency("assembly", (time.monotonic() - started) * 1000)
            logger.info(f"Assembled video ({result['duration']:.2f}s): {url}")

            return ArtifactRef(
                url=url,
                key=output_key,
                content_type="video/mp4",
                format="mp4",
                width=result.get("width"),
                height=result.get("height"),
                size_bytes=result.get("size_bytes", 0),
                fps=result.get("fps"),
                duration_seconds=result.get("duration"),
            )
        finally:
            shutil.rmtree(scratch, ignore_errors=True)
