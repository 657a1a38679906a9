"""
Continuation prompts for segments after the first.

The new prompt keeps the character, setting and camera style of the base
prompt while moving the dialogue and action forward.
"""

import logging

from ..gemini import GeminiClient
from .creative import has_prompt_fields

logger = logging.getLogger(__name__)

CONTINUATION_SYSTEM = """You write continuation prompts for consecutive 8 second UGC video segments.

The new segment follows directly from the previous one:
- Same character, setting and overall tone as the original prompt
- Same amateur iPhone video style
- The same person keeps talking about the same product
- New dialogue and slightly different actions, never a repeat of the original lines
- Progress naturally while staying focused on the product

Output format:
dialogue: [continuation of casual conversation]
action: [natural follow-up character actions]
camera: [same amateur iPhone video style]
emotion: [authentic emotional progression]
type: veo3_fast"""

FALLBACK_CONTINUATION_PROMPT = (
    "dialogue: and another thing about this product... it's really amazing\n"
    "action: character continues showing product with different angle\n"
    "camera: amateur iphone selfie video, uneven framing, natural lighting\n"
    "emotion: enthusiastic, authentic\n"
    "type: veo3_fast"
)

REQUIRED_FIELDS = ("dialogue", "action")


class ContinuationPromptGenerator:
    def __init__(self, gemini: GeminiClient):
        self._gemini = gemini

    async def generate(
        self,
        original_prompt: str,
        user_instructions: str,
        segment_index: int,
        total_segments: int,
    ) -> str:
        """
        Prompt for segment ``segment_index`` (0-based, always > 0).

        Generation errors propagate; text without dialogue/action is replaced
        by a fixed continuation template.
        """
        number = segment_index + 1
        prompt = (
            f"{CONTINUATION_SYSTEM}\n\n"
            f"Create a continuation prompt for video segment {number} of {total_segments}.\n\n"
            f"Original video prompt:\n{original_prompt}\n\n"
            f"User's original instructions:\n{user_instructions or 'none'}\n\n"
            f"This is segment {number}: the character picks up the conversation where the "
            "previous segment ended, with new dialogue and slightly different actions."
        )
        text = (await self._gemini.generate_text(prompt, temperature=0.7, max_output_tokens=1000)).strip()

        if not text or not has_prompt_fields(text, REQUIRED_FIELDS):
            logger.warning(f"Continuation prompt for segment {number} malformed, using fallback")
            return FALLBACK_CONTINUATION_PROMPT

        logger.info(f"Continuation prompt for segment {number}/{total_segments}: {text[:100]}...")
        return text
