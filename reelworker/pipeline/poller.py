"""
Async generation poller — submit a Veo job and wait for it cooperatively.

State machine per operation:

    submitted → polling → done
                        ↘ timeout   (ceiling reached while not done)
                        ↘ failed    (provider error / no usable result)

Sleep and clock are injected so interval and ceiling can be exercised
without real delays. Transient poll errors are logged and count as an
attempt; only exhausting the ceiling raises GenerationTimeout.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

import httpx

from .. import metrics
from .config import PipelineSettings
from .errors import GenerationFailed, GenerationTimeout
from .models import ArtifactRef, GenerationOperation, GenerationOptions, OperationStatus, PollState
from .storage import ObjectStorage

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class GenerationPoller:
    def __init__(
        self,
        veo_client,
        storage: ObjectStorage,
        settings: PipelineSettings,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ):
        self._veo = veo_client
        self._storage = storage
        self._interval = settings.poll_interval_seconds
        self._ceiling = settings.max_poll_attempts
        self._sleep = sleep
        self._clock = clock

    @property
    def ceiling(self) -> int:
        return self._ceiling

    async def generate(
        self,
        prompt: str,
        seed_image: ArtifactRef,
        options: GenerationOptions,
        output_key: str,
        label: str = "segment",
    ) -> ArtifactRef:
        """
        Generate one video from a prompt and seed image.

        Args:
            prompt:     Video prompt.
            seed_image: Image the clip starts from.
            options:    Aspect ratio / person generation settings.
            output_key: Storage key for the persisted result.
            label:      Human-readable name used in logs and errors.

        Returns:
            Durable ArtifactRef of the stored video (not the provider URL).
        """
        image_bytes, mime = await self._storage.download_with_type(seed_image.url)
        operation_id = await self._veo.submit(prompt, image_bytes, mime, options)
        operation = GenerationOperation(operation_id=operation_id)
        metrics.inc_counter("generation.submitted")

        operation = await self.wait(operation, label)
        return await self._persist(operation, output_key, label)

    async def wait(self, operation: GenerationOperation, label: str = "segment") -> GenerationOperation:
        """Drive the poll loop until the operation is done or the ceiling is hit."""
        started = self._clock()
        operation.state = PollState.POLLING

        while not operation.done and operation.poll_attempt < self._ceiling:
            await self._sleep(self._interval)
            operation.poll_attempt += 1
            metrics.inc_counter("generation.poll_attempts")

            try:
                status = await self._veo.get_operation(operation.operation_id)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(
                    f"Failed to poll {label} ({operation.poll_attempt}/{self._ceiling}): {e}"
                )
                continue

            self._apply(operation, status)
            logger.info(
                f"Waiting for {label} generation... "
                f"(attempt {operation.poll_attempt}/{self._ceiling}, done={operation.done})"
            )

        elapsed = self._clock() - started

        if not operation.done:
            operation.state = PollState.TIMEOUT
            metrics.inc_counter("errors.generation_timeout")
            raise GenerationTimeout(
                f"Video {label} generation timed out after {operation.poll_attempt} poll attempts "
                f"({int(self._ceiling * self._interval)}s)"
            )

        if operation.error:
            operation.state = PollState.FAILED
            raise GenerationFailed(f"Video {label} generation failed: {operation.error}")

        if not operation.result_uri:
            operation.state = PollState.FAILED
            raise GenerationFailed(
                f"Video {label} completed but no video in response: {_shape(operation.response)}"
            )

        operation.state = PollState.DONE
        metrics.record_latency("generation", elapsed * 1000)
        logger.info(f"Video {label} ready after {operation.poll_attempt} polls ({elapsed:.0f}s)")
        return operation

    @staticmethod
    def _apply(operation: GenerationOperation, status: OperationStatus):
        # done only ever flips false → true
        if status.done and not operation.done:
            operation.done = True
            operation.result_uri = status.result_uri
            operation.error = status.error
            operation.response = status.response

    async def _persist(
        self,
        operation: GenerationOperation,
        output_key: str,
        label: str,
    ) -> ArtifactRef:
        video_bytes = await self._veo.download(operation.result_uri)
        url = await self._storage.upload(video_bytes, output_key, "video/mp4")
        logger.info(f"Video {label} stored: {url}")

        # Dimensions and frame rate are unknown until the file is probed
        return ArtifactRef(
            url=url,
            key=output_key,
            content_type="video/mp4",
            format="mp4",
            size_bytes=len(video_bytes),
        )


def _shape(value, depth: int = 0) -> object:
    """Key structure of a response without payload data, for diagnostics."""
    if depth > 3:
        return "..."
    if isinstance(value, dict):
        return {k: _shape(v, depth + 1) for k, v in value.items()}
    if isinstance(value, list):
        return [_shape(value[0], depth + 1)] if value else []
    return type(value).__name__

