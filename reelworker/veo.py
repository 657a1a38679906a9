"""
Veo video generation via the Generative Language REST API.

Submission returns a long-running operation name; the operation is fetched
until it reports ``done``. Polling policy lives in pipeline/poller.py — this
module only speaks the wire format.
"""

import base64
import logging
from typing import Optional

import httpx

from .pipeline.config import PipelineSettings
from .pipeline.errors import GenerationFailed
from .pipeline.models import GenerationOptions, OperationStatus

logger = logging.getLogger(__name__)


def _extract_video_uri(response: dict) -> Optional[str]:
    """Find the generated video URI in the known response shapes."""
    gen = response.get("generateVideoResponse") or response
    samples = gen.get("generatedSamples") or gen.get("generatedVideos") or []
    if samples and isinstance(samples, list):
        video = samples[0].get("video") or {}
        return video.get("uri")
    return None


def parse_operation(payload: dict) -> OperationStatus:
    """Convert a raw operation document into an OperationStatus."""
    error = payload.get("error")
    response = payload.get("response") or {}
    return OperationStatus(
        done=bool(payload.get("done", False)),
        result_uri=_extract_video_uri(response) if response else None,
        error=(error.get("message") or str(error)) if isinstance(error, dict) else error,
        response=response,
    )


class VeoClient:
    def __init__(self, settings: PipelineSettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    def _http(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport, follow_redirects=True)

    async def submit(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        options: GenerationOptions,
    ) -> str:
        """
        Start an image-to-video generation.

        Returns:
            The operation name to poll.
        """
        s = self._settings
        if not s.gemini_api_key:
            raise GenerationFailed("GEMINI_API_KEY not set")

        parameters = {
            "aspectRatio": options.aspect_ratio,
            "personGeneration": options.person_generation,
        }
        if options.negative_prompt:
            parameters["negativePrompt"] = options.negative_prompt

        payload = {
            "instances": [
                {
                    "prompt": prompt,
                    "image": {
                        "bytesBase64Encoded": base64.b64encode(image_bytes).decode(),
                        "mimeType": mime_type,
                    },
                }
            ],
            "parameters": parameters,
        }

        url = f"{s.gemini_api_base}/models/{s.video_model}:predictLongRunning"
        try:
            async with self._http(s.api_timeout) as client:
                resp = await client.post(url, params={"key": s.gemini_api_key}, json=payload)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            raise GenerationFailed(f"Veo submit failed: {e}") from e

        name = data.get("name")
        if not name:
            raise GenerationFailed(f"Veo submit failed — no operation name: {data}")

        logger.info(f"Veo generation submitted: {name}")
        return name

    async def get_operation(self, operation_id: str) -> OperationStatus:
        """Fetch the current state of an operation.

        HTTP errors propagate as httpx errors and a non-JSON body as ValueError;
        the poller treats both as a failed attempt.
        """
        s = self._settings
        async with self._http(s.api_timeout) as client:
            resp = await client.get(
                f"{s.gemini_api_base}/{operation_id}",
                params={"key": s.gemini_api_key},
            )
            resp.raise_for_status()
            return parse_operation(resp.json())

    async def download(self, uri: str) -> bytes:
        """Download the generated video. Result URIs require the API key."""
        s = self._settings
        try:
            async with self._http(s.download_timeout) as client:
                resp = await client.get(uri, params={"key": s.gemini_api_key})
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise GenerationFailed(f"Failed to download generated video: {e}") from e

        if not resp.content:
            raise GenerationFailed("Generated video download returned no data")
        return resp.content
