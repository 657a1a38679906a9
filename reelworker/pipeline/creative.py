"""
Creative stages 1–4: analysis → image prompt → reference image → video prompt.

Each stage is one Gemini call. Prompt stages check the model output for the
expected structure and fall back to a fixed template when it is missing;
analysis and image generation have no fallback and raise instead.
"""

import io
import json
import logging

from PIL import Image, UnidentifiedImageError

from ..gemini import GeminiClient, parse_json_response
from .errors import GenerationFailed
from .models import ArtifactRef, ImageAnalysis, ImagePrompt
from .storage import ObjectStorage

logger = logging.getLogger(__name__)


# ── Prompts ──────────────────────────────────────────────────────────────────

ANALYSIS_PROMPT = """Look at this image and decide whether it mainly shows a product, a character, or both.

For a product, answer in YAML with these fields:
brand_name: (brand shown or reasonably inferred)
color_scheme:
  - hex: (hex code of each prominent color)
    name: (descriptive color name)
font_style: (font family / weight of any visible text)
visual_description: (one or two sentences describing the product, ignoring the background)

For a character, answer in YAML with these fields:
character_name: (name if shown or inferable)
color_scheme:
  - hex: (hex code of each prominent color on the character)
    name: (descriptive color name)
outfit_style: (clothing, accessories, notable features)
visual_description: (one or two sentences describing the character, ignoring the background)

If it shows both, return both blocks. Return only YAML, no commentary. Be precise about every visible detail and text."""

IMAGE_PROMPT_SYSTEM = """You write prompts for an image model that places a product into a casual, user-generated scene.

Unless the user asks for something else:
- Default to: put this product into a realistic scene with a person holding it.
- Use candid UGC realism: amateur iPhone photo, slightly uneven framing, natural light, real-world clutter left as-is.
- Keep every piece of visible product text exactly as in the reference image.
- Vary gender, ethnicity and hair color; default to adults aged 21 to 38.

Respond with ONLY a JSON object, no markdown, no explanation:
{
  "image_prompt": "<YAML string with action, character, product, setting, camera, style, text_accuracy>",
  "aspect_ratio_image": "2:3" | "3:2"
}"""

VIDEO_PROMPT_SYSTEM = """You write a single prompt for an 8 second UGC-style video generated from a still image.

The video must feel candid and unpolished: amateur iPhone selfie video, slightly uneven framing and lighting, genuine expressions, a real-world setting.
The character talks casually about the product and its benefits (taste for a drink, design for a bag, features for tech) in under 150 characters of dialogue. Use ... for pauses. No double quotes, no em dashes, no hyphens.
Unless the user says otherwise the character only shows the product to the camera and does not open or use it.

Output format:
dialogue: [casual conversation about the product]
action: [natural character actions with the product]
camera: [amateur iPhone video style description]
emotion: [authentic emotional state]
type: veo3_fast"""

DEFAULT_IMAGE_PROMPT = (
    "action: character holds product naturally\n"
    "character: infer from the reference image\n"
    "product: show product with all visible text clear and accurate\n"
    "setting: casual real-world environment\n"
    "camera: amateur iPhone photo, casual selfie, uneven framing, slightly blurry\n"
    "style: candid UGC look, no filters, imperfections intact\n"
    "text_accuracy: preserve all visible text exactly as in reference image"
)

FALLBACK_VIDEO_PROMPT = (
    "dialogue: hey everyone... check out this amazing product I found\n"
    "action: character holds product naturally while speaking to camera\n"
    "camera: amateur iphone selfie video, uneven framing, natural lighting\n"
    "emotion: excited, authentic\n"
    "type: veo3_fast"
)

VIDEO_PROMPT_FIELDS = ("dialogue", "action", "camera")
IMAGE_ASPECT_RATIOS = ("2:3", "3:2")

IMAGE_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp"}


def has_prompt_fields(text: str, fields) -> bool:
    """True when every ``field:`` label appears in a labeled-field prompt."""
    lower = (text or "").lower()
    return all(f"{field}:" in lower for field in fields)


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[-1]
    if text.endswith("```"):
        text = text.rsplit("```", 1)[0]
    return text.strip()


# ── Stage 1: Image analysis ──────────────────────────────────────────────────

async def analyze_source_image(gemini: GeminiClient, image_bytes: bytes, mime_type: str) -> ImageAnalysis:
    """Describe the product and/or character in the source image as YAML."""
    text = _strip_fences(await gemini.analyze_image(image_bytes, mime_type, ANALYSIS_PROMPT))
    if not text:
        raise GenerationFailed("Image analysis returned no text")

    summary = ""
    for line in text.splitlines():
        if line.strip().startswith("visual_description:"):
            summary = line.split(":", 1)[1].strip()
            break
    if not summary:
        summary = text.splitlines()[0].strip()

    logger.info(f"Image analysis complete: {summary[:100]}")
    return ImageAnalysis(summary=summary[:300], analysis=text)


# ── Stage 2: Image prompt ────────────────────────────────────────────────────

async def generate_image_prompt(
    gemini: GeminiClient, analysis: ImageAnalysis, user_prompt: str
) -> ImagePrompt:
    """Scene prompt for the reference image; falls back to a default scene."""
    prompt = (
        f"{IMAGE_PROMPT_SYSTEM}\n\n"
        "Create 1 image prompt. Depict the reference product as accurately as possible, "
        "especially all text.\n"
        f"***\nUser's instructions:\n{user_prompt or 'none'}\n"
        f"***\nReference image analysis:\n{analysis.analysis}"
    )
    text = await gemini.generate_text(prompt, temperature=0.7, max_output_tokens=1500)

    try:
        data = parse_json_response(text)
    except (json.JSONDecodeError, IndexError) as e:
        logger.warning(f"Failed to parse image prompt response, using default: {e}")
        return ImagePrompt(image_prompt=DEFAULT_IMAGE_PROMPT)

    image_prompt = data.get("image_prompt") if isinstance(data, dict) else None
    if isinstance(image_prompt, dict):
        image_prompt = "\n".join(f"{k}: {v}" for k, v in image_prompt.items())
    if not isinstance(image_prompt, str) or not image_prompt.strip():
        logger.warning("Image prompt response had no image_prompt, using default")
        return ImagePrompt(image_prompt=DEFAULT_IMAGE_PROMPT)

    ratio = data.get("aspect_ratio_image")
    if ratio not in IMAGE_ASPECT_RATIOS:
        ratio = "2:3"

    logger.info(f"Image prompt generated ({ratio}): {image_prompt[:100]}...")
    return ImagePrompt(image_prompt=image_prompt.strip(), aspect_ratio_image=ratio)


# ── Stage 3: Reference image ─────────────────────────────────────────────────

async def generate_reference_image(
    gemini: GeminiClient,
    storage: ObjectStorage,
    image_prompt: ImagePrompt,
    source_bytes: bytes,
    source_mime: str,
    output_key: str,
) -> ArtifactRef:
    """
    Render the reference scene with the source product as subject reference.

    Args:
        output_key: Storage key without extension; the extension follows the
                    returned image type.
    """
    prompt = f"{image_prompt.image_prompt}\n\naspect ratio: {image_prompt.aspect_ratio_image}"
    data, mime = await gemini.generate_image(prompt, source_bytes, source_mime)

    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
    except (UnidentifiedImageError, OSError) as e:
        raise GenerationFailed(f"Generated reference image is not a readable image: {e}") from e

    ext = IMAGE_EXTENSIONS.get(mime, "png")
    key = f"{output_key}.{ext}"
    url = await storage.upload(data, key, mime)

    logger.info(f"Reference image stored ({width}x{height}): {url}")
    return ArtifactRef(
        url=url,
        key=key,
        content_type=mime,
        format=ext,
        width=width,
        height=height,
        size_bytes=len(data),
    )


# ── Stage 4: Video prompt ────────────────────────────────────────────────────

async def generate_video_prompt(
    gemini: GeminiClient,
    reference: ArtifactRef,
    user_prompt: str,
    analysis: ImageAnalysis,
    aspect_ratio: str,
) -> str:
    """Labeled-field prompt for the first segment; falls back to a fixed template."""
    prompt = (
        f"{VIDEO_PROMPT_SYSTEM}\n\n"
        "Create a single video prompt. The generated image below is the first frame; "
        "depict it as accurately as possible, especially all text and visual elements.\n"
        f"***\nUser's instructions:\n{user_prompt or 'none'}\n"
        f"***\nReference image analysis:\n{analysis.analysis}\n"
        f"***\nGenerated image URL:\n{reference.url}\n"
        f"***\nAspect ratio: {aspect_ratio}"
    )
    text = (await gemini.generate_text(prompt, temperature=0.7, max_output_tokens=1500)).strip()

    if not has_prompt_fields(text, VIDEO_PROMPT_FIELDS):
        logger.warning("Video prompt missing dialogue/action/camera, using fallback")
        return FALLBACK_VIDEO_PROMPT

    logger.info(f"Video prompt generated: {text[:100]}...")
    return text
