"""
VideoGenerationService — Main pipeline orchestrator.

Chains every stage of a run with status tracking, full asyncio support:
  Step 1: Image analysis (Gemini Flash)
  Step 2: Image prompt (Gemini Flash)
  Step 3: Reference image (Gemini image model)
  Step 4: Video prompt (Gemini Flash)
  Step 5: Segment loop: Veo generation → last-frame extraction → next segment
  Step 6: Assembly (ffmpeg cut / crossfade)

Collaborators are injected; ``from_settings`` wires the production ones.
"""

import asyncio
import logging
import time
import uuid
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .. import metrics
from ..gemini import GeminiClient
from ..veo import VeoClient
from .assembler import SegmentAssembler
from .config import MAX_DURATION_SECONDS, MIN_DURATION_SECONDS, RESOLUTIONS, PipelineSettings
from .continuation import ContinuationPromptGenerator
from .creative import (
    analyze_source_image,
    generate_image_prompt,
    generate_reference_image,
    generate_video_prompt,
)
from .errors import MetadataPersistenceError, ValidationError
from .frames import FrameExtractor
from .models import (
    AssemblyMode,
    GenerationOptions,
    PipelineResult,
    PipelineRun,
    PipelineStage,
    PipelineStatusResponse,
    Segment,
    SegmentStatus,
    SegmentSummary,
    VideoCreationRequest,
    segment_count_for,
)
from .poller import GenerationPoller
from .records import RunRecordStore
from .storage import ObjectStorage, artifact_key

logger = logging.getLogger(__name__)

# Progress band covered by the segment loop
SEGMENTS_START_PCT = 40
SEGMENTS_END_PCT = 85

TERMINAL_STAGES = (PipelineStage.COMPLETED, PipelineStage.FAILED)


class VideoGenerationService:
    """
    Production-grade pipeline orchestrator.

    Usage:
        service = VideoGenerationService.from_settings(PipelineSettings.from_env())

        # Blocking: returns when the run reaches a terminal state
        result = await service.run_pipeline(request)

        # Background: returns the run id immediately, poll get_status()
        run_id = await service.run_pipeline_background(request)
    """

    def __init__(
        self,
        settings: PipelineSettings,
        storage: ObjectStorage,
        gemini: GeminiClient,
        poller: GenerationPoller,
        extractor: FrameExtractor,
        assembler: SegmentAssembler,
        continuation: ContinuationPromptGenerator,
        records: RunRecordStore,
    ):
        self.settings = settings
        self.storage = storage
        self.extractor = extractor
        self.assembler = assembler
        self._gemini = gemini
        self._poller = poller
        self._continuation = continuation
        self._records = records
        self._assembly_mode = AssemblyMode(settings.assembly_mode)
        self._jobs: dict[str, PipelineStatusResponse] = {}
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> "VideoGenerationService":
        storage = ObjectStorage(settings)
        gemini = GeminiClient(settings)
        return cls(
            settings=settings,
            storage=storage,
            gemini=gemini,
            poller=GenerationPoller(VeoClient(settings), storage, settings),
            extractor=FrameExtractor(storage, settings),
            assembler=SegmentAssembler(storage, settings),
            continuation=ContinuationPromptGenerator(gemini),
            records=RunRecordStore(settings),
        )

    # ── Status ───────────────────────────────────────────────────────────

    def get_status(self, run_id: str) -> Optional[PipelineStatusResponse]:
        """Get the current status of a run (None if unknown)."""
        return self._jobs.get(run_id)

    def _update_status(
        self,
        run_id: str,
        stage: PipelineStage,
        step: str = "",
        progress: int = 0,
        result_url: Optional[str] = None,
        error: Optional[str] = None,
    ):
        # Re-insert so table order follows the latest update
        self._jobs.pop(run_id, None)
        self._jobs[run_id] = PipelineStatusResponse(
            run_id=run_id,
            stage=stage,
            current_step=step,
            progress_pct=progress,
            result_url=result_url,
            error=error,
        )
        logger.info(f"[{run_id}] {stage.value} → {step} ({progress}%)")
        if stage in TERMINAL_STAGES:
            self._evict_finished()

    def _evict_finished(self):
        """Drop the oldest finished runs once more than max_tracked_runs are held."""
        finished = [rid for rid, s in self._jobs.items() if s.stage in TERMINAL_STAGES]
        excess = len(finished) - self.settings.max_tracked_runs
        for rid in finished[:max(excess, 0)]:
            del self._jobs[rid]

    # ── Validation ───────────────────────────────────────────────────────

    @staticmethod
    def validate_request(request: Union[VideoCreationRequest, dict]) -> VideoCreationRequest:
        """
        Check a request before any collaborator is touched.

        Raises:
            ValidationError: malformed request or out-of-range duration.
        """
        if isinstance(request, dict):
            try:
                request = VideoCreationRequest.model_validate(request)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid request: {e.errors()[0].get('msg', e)}") from e

        duration = request.total_duration_seconds
        if not isinstance(duration, int) or not MIN_DURATION_SECONDS <= duration <= MAX_DURATION_SECONDS:
            raise ValidationError(
                f"totalDurationSeconds must be between {MIN_DURATION_SECONDS} and "
                f"{MAX_DURATION_SECONDS}, got {duration}"
            )
        if request.aspect_ratio not in RESOLUTIONS:
            raise ValidationError(f"Unsupported aspect ratio: {request.aspect_ratio}")
        if not request.source_image_url.startswith(("http://", "https://")):
            raise ValidationError("sourceImageUrl must be an http(s) URL")
        if not request.owner_id:
            raise ValidationError("ownerId is required")
        return request

    # ── The Creation Flow ────────────────────────────────────────────────

    async def run_pipeline(
        self,
        request: Union[VideoCreationRequest, dict],
        run_id: Optional[str] = None,
    ) -> PipelineResult:
        """
        Run the full product-image → narrated-video pipeline.

        Args:
            request: Source image, user instructions, duration and aspect ratio.
            run_id:  Optional pre-assigned id (background runs).

        Returns:
            PipelineResult. Failures after validation are reported in the
            result, never raised.

        Raises:
            ValidationError: request rejected before any external call.
        """
        request = self.validate_request(request)
        run = PipelineRun(
            run_id=run_id or uuid.uuid4().hex,
            owner_id=request.owner_id,
            requested_duration_seconds=request.total_duration_seconds,
            aspect_ratio=request.aspect_ratio,
            user_prompt=request.user_prompt,
            source_image_url=request.source_image_url,
        )
        rid = run.run_id
        count = segment_count_for(request.total_duration_seconds)
        started = time.monotonic()
        stage = PipelineStage.QUEUED
        current: Optional[Segment] = None

        metrics.inc_counter("runs.started")
        metrics.add_gauge("active_runs", 1)
        logger.info(
            f"[{rid}] Starting pipeline: {request.total_duration_seconds}s "
            f"({count} segments, {request.aspect_ratio}) for owner {request.owner_id}"
        )

        try:
            # ── Step 1: Image analysis ───────────────────────────────
            stage = PipelineStage.ANALYZING
            self._update_status(rid, stage, "Analyzing source image...", 5)
            source_bytes, source_mime = await self.storage.download_with_type(request.source_image_url)
            analysis = await analyze_source_image(self._gemini, source_bytes, source_mime)

            # ── Step 2: Image prompt ─────────────────────────────────
            stage = PipelineStage.IMAGE_PROMPT
            self._update_status(rid, stage, "Writing reference image prompt...", 15)
            image_prompt = await generate_image_prompt(self._gemini, analysis, request.user_prompt)

            # ── Step 3: Reference image ──────────────────────────────
            stage = PipelineStage.IMAGE_GEN
            self._update_status(rid, stage, "Generating reference image...", 25)
            reference = await generate_reference_image(
                self._gemini,
                self.storage,
                image_prompt,
                source_bytes,
                source_mime,
                artifact_key(run.owner_id, rid, "reference"),
            )

            # ── Step 4: Video prompt ─────────────────────────────────
            stage = PipelineStage.VIDEO_PROMPT
            self._update_status(rid, stage, "Writing video prompt...", 35)
            base_prompt = await generate_video_prompt(
                self._gemini, reference, request.user_prompt, analysis, request.aspect_ratio
            )

            # ── Step 5: Segment loop ─────────────────────────────────
            stage = PipelineStage.SEGMENTS
            options = GenerationOptions(
                aspect_ratio=request.aspect_ratio,
                person_generation=self.settings.person_generation,
            )
            seed = reference
            for i in range(count):
                if i == 0:
                    prompt = base_prompt
                else:
                    prompt = await self._continuation.generate(
                        base_prompt, request.user_prompt, i, count
                    )

                current = Segment(index=i, video_prompt=prompt, seed_image=seed)
                run.segments.append(current)

                current.status = SegmentStatus.GENERATING
                self._update_status(
                    rid, stage, f"Generating segment {i + 1}/{count}...", self._segment_progress(i, count)
                )
                current.video = await self._poller.generate(
                    prompt,
                    seed,
                    options,
                    artifact_key(run.owner_id, rid, f"segment-{i + 1}.mp4"),
                    label=f"segment {i + 1}",
                )

                if i < count - 1:
                    current.status = SegmentStatus.EXTRACTING
                    current.extracted_frame = await self.extractor.extract(
                        current.video,
                        artifact_key(run.owner_id, rid, f"frame-{i + 1}"),
                        position="last",
                    )
                    seed = current.extracted_frame

                current.status = SegmentStatus.DONE
                logger.info(f"[{rid}] Segment {i + 1}/{count} done: {current.video.url}")
            current = None

            # ── Step 6: Assembly ─────────────────────────────────────
            stage = PipelineStage.ASSEMBLING
            self._update_status(rid, stage, f"Assembling {count} segments ({self._assembly_mode.value})...", 90)
            final = await self.assembler.assemble(
                [s.video.url for s in run.segments],
                artifact_key(run.owner_id, rid, "final.mp4"),
                mode=self._assembly_mode,
                aspect_ratio=request.aspect_ratio,
                crossfade_duration=self.settings.crossfade_duration,
            )

            # ── Done ─────────────────────────────────────────────────
            run.mark_completed(final)
            self._update_status(rid, PipelineStage.COMPLETED, "Pipeline complete!", 100, result_url=final.url)
            metrics.inc_counter("runs.completed")
            logger.info(f"[{rid}] Pipeline completed: {final.url}")

            result = PipelineResult(
                success=True,
                run_id=rid,
                final_video_url=final.url,
                segments=[SegmentSummary(index=s.index, video_url=s.video.url) for s in run.segments],
            )

        except Exception as e:
            logger.error(f"[{rid}] Pipeline failed at {stage.value}: {e}", exc_info=True)
            if current is not None:
                current.status = SegmentStatus.FAILED
            run.mark_failed(str(e))
            self._update_status(rid, PipelineStage.FAILED, f"Failed during {stage.value}", error=run.error)
            metrics.inc_counter("runs.failed")
            metrics.record_error(stage.value, type(e).__name__, run.error, rid)

            result = PipelineResult(success=False, run_id=rid, error=run.error)

        finally:
            metrics.add_gauge("active_runs", -1)
            metrics.record_latency("pipeline", (time.monotonic() - started) * 1000)

        await self._persist_record(run)
        return result

    async def run_pipeline_background(
        self,
        request: Union[VideoCreationRequest, dict],
        run_id: Optional[str] = None,
    ) -> str:
        """Validate, then start run_pipeline as a task. Returns the run id."""
        request = self.validate_request(request)
        run_id = run_id or uuid.uuid4().hex
        self._update_status(run_id, PipelineStage.QUEUED, "Pipeline queued", 0)

        task = asyncio.create_task(self.run_pipeline(request, run_id=run_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return run_id

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _segment_progress(index: int, count: int) -> int:
        span = SEGMENTS_END_PCT - SEGMENTS_START_PCT
        return SEGMENTS_START_PCT + int(span * index / count)

    async def _persist_record(self, run: PipelineRun):
        try:
            await self._records.put(run.run_id, run.to_record())
        except MetadataPersistenceError as e:
            metrics.inc_counter("errors.metadata_persistence")
            logger.error(f"[{run.run_id}] Failed to persist run record: {e}")
