"""
Gemini integration for image analysis, prompt writing and reference-image generation.

- Analysis / text: Gemini Flash generateContent via REST
- Image generation: Gemini image model via the same endpoint, with the source
  product image passed inline as the subject reference
"""

import base64
import json
import logging
from typing import Optional

import httpx

from .pipeline.config import PipelineSettings
from .pipeline.errors import GenerationFailed

logger = logging.getLogger(__name__)


def parse_json_response(text: str) -> dict:
    """Parse JSON from a Gemini response, handling markdown code blocks."""
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        if "```" in text:
            json_block = text.split("```")[1]
            if json_block.startswith("json"):
                json_block = json_block[4:]
            return json.loads(json_block.strip())
        raise


def response_text(result: dict) -> str:
    """Concatenate the text parts of the first candidate ('' if none)."""
    candidates = result.get("candidates") or []
    if not candidates:
        return ""
    parts = candidates[0].get("content", {}).get("parts", [])
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict)).strip()


class GeminiClient:
    """
    Stateless REST client. A fresh httpx.AsyncClient is opened per call;
    ``transport`` lets tests swap in an httpx.MockTransport.
    """

    def __init__(self, settings: PipelineSettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    def _url(self, model: str) -> str:
        return f"{self._settings.gemini_api_base}/models/{model}:generateContent"

    async def generate_content(self, model: str, parts: list, config: Optional[dict] = None) -> dict:
        """Call Gemini generateContent REST endpoint."""
        if not self._settings.gemini_api_key:
            raise GenerationFailed("GEMINI_API_KEY not set")

        body: dict = {"contents": [{"role": "user", "parts": parts}]}
        if config:
            body["generationConfig"] = config

        try:
            async with httpx.AsyncClient(
                timeout=self._settings.api_timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    self._url(model),
                    params={"key": self._settings.gemini_api_key},
                    json=body,
                )
        except httpx.HTTPError as e:
            raise GenerationFailed(f"Gemini request to {model} failed: {e}") from e

        if resp.status_code != 200:
            raise GenerationFailed(f"Gemini API error {resp.status_code}: {resp.text[:500]}")

        return resp.json()

    # ── Capabilities ─────────────────────────────────────────────────────

    async def generate_text(
        self,
        prompt: str,
        temperature: float = 0.7,
        max_output_tokens: int = 1500,
        model: Optional[str] = None,
    ) -> str:
        result = await self.generate_content(
            model or self._settings.text_model,
            [{"text": prompt}],
            {"temperature": temperature, "maxOutputTokens": max_output_tokens},
        )
        return response_text(result)

    async def analyze_image(self, image_bytes: bytes, mime_type: str, prompt: str) -> str:
        parts = [
            {"text": prompt},
            {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(image_bytes).decode()}},
        ]
        result = await self.generate_content(
            self._settings.analysis_model, parts, {"temperature": 0.2}
        )
        return response_text(result)

    async def generate_image(
        self, prompt: str, reference_bytes: bytes, reference_mime: str
    ) -> tuple[bytes, str]:
        """
        Generate an image conditioned on a subject reference.

        Returns:
            (image_bytes, mime_type) of the first image part in the response.
        """
        parts = [
            {"inlineData": {"mimeType": reference_mime, "data": base64.b64encode(reference_bytes).decode()}},
            {"text": "This is the subject reference. Depict it accurately, including all visible text."},
            {"text": prompt},
        ]
        result = await self.generate_content(
            self._settings.image_model,
            parts,
            {"responseModalities": ["TEXT", "IMAGE"], "temperature": 0.7},
        )

        candidates = result.get("candidates") or []
        if not candidates:
            raise GenerationFailed("Gemini returned no candidates for image generation.")

        for part in candidates[0].get("content", {}).get("parts", []):
            if "inlineData" in part:
                data = base64.b64decode(part["inlineData"]["data"])
                mime = part["inlineData"].get("mimeType", "image/png")
                logger.info(f"Gemini image generated: {len(data)} bytes ({mime})")
                return data, mime

        raise GenerationFailed("Gemini response contained no image data.")
