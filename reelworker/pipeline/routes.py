"""
FastAPI routes for the video generation pipeline.

Pipeline Endpoints:
  POST /pipeline/create          — Run the full pipeline and wait for the result
  POST /pipeline/run             — Start the pipeline in the background
  GET  /pipeline/status/{id}     — Get run status

Media Endpoints:
  POST /media/extract-frame      — Extract one frame from a stored video
  POST /media/assemble           — Combine stored videos (cut / crossfade)
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from .config import PipelineSettings
from .errors import PipelineError, StorageError, ValidationError
from .models import (
    ArtifactRef,
    AssemblyRequest,
    FrameExtractionRequest,
    PipelineResult,
    PipelineStage,
    PipelineStatusResponse,
    VideoCreationRequest,
)
from .orchestrator import VideoGenerationService

logger = logging.getLogger(__name__)

# Lazily created so importing the app never needs credentials
_service: Optional[VideoGenerationService] = None


def get_service() -> VideoGenerationService:
    global _service
    if _service is None:
        _service = VideoGenerationService.from_settings(PipelineSettings.from_env())
    return _service


def _http_error(e: PipelineError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, StorageError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


# ═════════════════════════════════════════════════════════════════════════════
# Pipeline Router
# ═════════════════════════════════════════════════════════════════════════════

pipeline_router = APIRouter(prefix="/pipeline", tags=["pipeline"])


@pipeline_router.post("/create", response_model=PipelineResult)
async def create_video(
    request: VideoCreationRequest,
    service: VideoGenerationService = Depends(get_service),
):
    """Run the full pipeline synchronously."""
    try:
        return await service.run_pipeline(request)
    except ValidationError as e:
        raise _http_error(e)


@pipeline_router.post("/run", response_model=PipelineStatusResponse)
async def run_pipeline(
    request: VideoCreationRequest,
    service: VideoGenerationService = Depends(get_service),
):
    """Start the pipeline in the background; poll /pipeline/status/{run_id}."""
    try:
        run_id = await service.run_pipeline_background(request)
    except ValidationError as e:
        raise _http_error(e)

    return PipelineStatusResponse(
        run_id=run_id,
        stage=PipelineStage.QUEUED,
        current_step="Pipeline started — analyzing image...",
        progress_pct=0,
    )


@pipeline_router.get("/status/{run_id}", response_model=PipelineStatusResponse)
async def get_pipeline_status(
    run_id: str,
    service: VideoGenerationService = Depends(get_service),
):
    """Get the current status of a pipeline run."""
    status = service.get_status(run_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return status


# ═════════════════════════════════════════════════════════════════════════════
# Media Router: frame extraction and assembly sub-interfaces
# ═════════════════════════════════════════════════════════════════════════════

media_router = APIRouter(prefix="/media", tags=["media"])


@media_router.post("/extract-frame", response_model=ArtifactRef)
async def extract_frame(
    request: FrameExtractionRequest,
    service: VideoGenerationService = Depends(get_service),
):
    """
    Extract a frame ("first", "last" or seconds) from a video URL.

    Errors:
      - 500: Decode / seek failed or position out of range
      - 502: Download or upload failed
    """
    video = ArtifactRef(url=request.video_url, key="", content_type="video/mp4", format="mp4")
    output_key = f"media/frames/{uuid.uuid4().hex}"
    try:
        return await service.extractor.extract(
            video,
            output_key,
            position=request.frame_position,
            fmt=request.output_format,
        )
    except PipelineError as e:
        logger.error(f"Frame extraction failed: {e}", exc_info=True)
        raise _http_error(e)


@media_router.post("/assemble", response_model=ArtifactRef)
async def assemble_videos(
    request: AssemblyRequest,
    service: VideoGenerationService = Depends(get_service),
):
    """
    Combine videos in order, by hard cut or crossfade.

    Errors:
      - 500: FFmpeg processing failed
      - 502: Download or upload failed
    """
    output_key = f"media/assembled/{uuid.uuid4().hex}.mp4"
    try:
        return await service.assembler.assemble(
            request.inputs,
            output_key,
            mode=request.mode,
            aspect_ratio=request.aspect_ratio,
            crossfade_duration=request.crossfade_duration_seconds,
        )
    except PipelineError as e:
        logger.error(f"Assembly failed: {e}", exc_info=True)
        raise _http_error(e)
