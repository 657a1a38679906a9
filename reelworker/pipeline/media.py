"""
ffmpeg / ffprobe helpers: probing, scale-and-pad geometry and filter graphs.

Everything here is synchronous and meant to run inside an isolated worker
process (see isolation.py). Graph builders are pure functions of probed
input metadata.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

AUDIO_SAMPLE_RATE = 48000


class MediaToolError(RuntimeError):
    """ffmpeg or ffprobe exited with an error."""


@dataclass
class MediaInfo:
    width: int
    height: int
    duration: float
    fps: float
    has_audio: bool


def _parse_rate(rate: str) -> float:
    try:
        if "/" in rate:
            num, den = rate.split("/", 1)
            return float(num) / float(den) if float(den) else 0.0
        return float(rate)
    except (TypeError, ValueError):
        return 0.0


def probe(path: str, ffprobe_path: str = "ffprobe") -> MediaInfo:
    """Use ffprobe to read dimensions, duration, frame rate and audio presence."""
    cmd = [
        ffprobe_path,
        "-v", "error",
        "-show_entries", "stream=codec_type,width,height,r_frame_rate,duration:format=duration",
        "-of", "json",
        path,
    ]
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise MediaToolError(f"ffprobe failed for {path}: {result.stderr.strip()[-500:]}")

    data = json.loads(result.stdout or "{}")
    streams = data.get("streams", [])
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video is None:
        raise MediaToolError(f"No video stream found in {path}")

    duration = (data.get("format") or {}).get("duration") or video.get("duration")
    if duration is None:
        raise MediaToolError(f"Could not determine duration of {path}")

    return MediaInfo(
        width=int(video.get("width", 0)),
        height=int(video.get("height", 0)),
        duration=float(duration),
        fps=_parse_rate(video.get("r_frame_rate", "0/1")),
        has_audio=any(s.get("codec_type") == "audio" for s in streams),
    )


def run_ffmpeg(args: list[str], ffmpeg_path: str = "ffmpeg") -> None:
    cmd = [ffmpeg_path, "-hide_banner", "-loglevel", "error", "-y", *args]
    logger.info(f"FFmpeg command: {' '.join(cmd)}")
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise MediaToolError(
            f"ffmpeg exited with code {result.returncode}: {result.stderr.strip()[-800:]}"
        )


# ── Geometry ─────────────────────────────────────────────────────────────────

def _even(value: float) -> int:
    return max(2, int(value) // 2 * 2)


def scaled_size(src_w: int, src_h: int, dst_w: int, dst_h: int) -> tuple[int, int]:
    """
    Size after ``scale=W:H:force_original_aspect_ratio=decrease`` (even dims).

    The result always fits inside (dst_w, dst_h); padding fills the rest.
    """
    if src_w <= 0 or src_h <= 0:
        return dst_w, dst_h
    ratio = min(dst_w / src_w, dst_h / src_h)
    w = min(dst_w, _even(round(src_w * ratio)))
    h = min(dst_h, _even(round(src_h * ratio)))
    return w, h


def padding_offsets(src_w: int, src_h: int, dst_w: int, dst_h: int) -> tuple[int, int]:
    w, h = scaled_size(src_w, src_h, dst_w, dst_h)
    return (dst_w - w) // 2, (dst_h - h) // 2


def scale_pad_filter(width: int, height: int, fps: Optional[float] = None) -> str:
    """Aspect-preserving scale-and-pad chain to exactly width x height."""
    chain = (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1"
    )
    if fps:
        chain += f",fps={fps:g},format=yuv420p"
    return chain


# ── Filter graphs ────────────────────────────────────────────────────────────

def normalize_inputs(
    inputs: list[MediaInfo], width: int, height: int, fps: float
) -> list[str]:
    """Per-input normalization producing [v{i}] and [a{i}] labels."""
    parts = []
    for i, info in enumerate(inputs):
        parts.append(f"[{i}:v]{scale_pad_filter(width, height, fps)}[v{i}]")
        if info.has_audio:
            parts.append(
                f"[{i}:a]aresample={AUDIO_SAMPLE_RATE},"
                f"aformat=sample_fmts=fltp:sample_rates={AUDIO_SAMPLE_RATE}:channel_layouts=stereo[a{i}]"
            )
        else:
            parts.append(
                f"anullsrc=r={AUDIO_SAMPLE_RATE}:cl=stereo,"
                f"atrim=duration={info.duration:.3f},aformat=sample_fmts=fltp[a{i}]"
            )
    return parts


def build_concat_graph(
    inputs: list[MediaInfo], width: int, height: int, fps: float
) -> list[str]:
    """Normalize every input then concat (video, audio) pairs in order."""
    parts = normalize_inputs(inputs, width, height, fps)
    pairs = "".join(f"[v{i}][a{i}]" for i in range(len(inputs)))
    parts.append(f"{pairs}concat=n={len(inputs)}:v=1:a=1[outv][outa]")
    return parts


def crossfade_offsets(durations: list[float], crossfade: float) -> list[float]:
    """xfade offsets for chaining clips: each starts ``crossfade`` before the running end."""
    offsets = []
    running = durations[0]
    for d in durations[1:]:
        offsets.append(round(running - crossfade, 3))
        running = running + d - crossfade
    return offsets


def build_crossfade_graph(
    inputs: list[MediaInfo], width: int, height: int, fps: float, crossfade: float
) -> list[str]:
    """
    Chain xfade / acrossfade over consecutive pairs.

    Output of pair i feeds pair i+1; the chain ends in [outv][outa]. Total
    duration is sum(durations) - (n - 1) * crossfade.
    """
    if len(inputs) < 2:
        raise ValueError("Crossfade needs at least two inputs")
    shortest = min(info.duration for info in inputs)
    if crossfade >= shortest:
        raise ValueError(
            f"Crossfade duration {crossfade}s must be shorter than every input (shortest {shortest:.2f}s)"
        )

    parts = normalize_inputs(inputs, width, height, fps)
    offsets = crossfade_offsets([info.duration for info in inputs], crossfade)

    prev_v, prev_a = "[v0]", "[a0]"
    last = len(inputs) - 1
    for i in range(1, len(inputs)):
        out_v = "[outv]" if i == last else f"[xv{i}]"
        out_a = "[outa]" if i == last else f"[xa{i}]"
        parts.append(
            f"{prev_v}[v{i}]xfade=transition=fade:duration={crossfade:g}:offset={offsets[i - 1]:g}{out_v}"
        )
        parts.append(f"{prev_a}[a{i}]acrossfade=d={crossfade:g}{out_a}")
        prev_v, prev_a = out_v, out_a
    return parts


def encode_args(preset: str, crf: int, audio_bitrate: str) -> list[str]:
    return [
        "-map", "[outv]",
        "-map", "[outa]",
        "-c:v", "libx264",
        "-preset", preset,
        "-crf", str(crf),
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", audio_bitrate,
        "-movflags", "+faststart",
    ]
