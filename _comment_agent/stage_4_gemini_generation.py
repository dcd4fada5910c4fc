"""
Stage 4: Gemini Generation — Gemini Comment Agent

PURPOSE:
    Send the assembled prompt to Gemini and return the generated Markdown.
    This is the only stage that talks to the LLM.

CALLED BY:
    comment_pipeline_main.py — passes the prompt string from Stage 3.

EXTERNAL APIS USED:
    - Gemini API (google-genai Python SDK), streaming generate_content
    - API key from the GEMINI_API_KEY environment variable

DESIGN DECISIONS:
    - One GeminiGenerator is built at startup with the process-wide model
      name, temperature and max output tokens. The SDK client is safe to
      share between the worker threads that run commands.
    - Safety settings block MEDIUM_AND_ABOVE for harassment, hate speech,
      sexually explicit and dangerous content.
    - We stream and drain the whole response before returning. A partially
      streamed answer is never surfaced: if the stream fails halfway, the
      whole call is a failure.
    - generate() never raises. Failures come back as a GenerationResult with
      error set; callers branch on result.ok / result.error instead of
      searching the text for an error string.
    - No retries. A failed generation is reported once on the PR or issue
      and the command ends; the user can comment again.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from google import genai
from google.genai import types

logger = logging.getLogger(__name__)

ERROR_MARKER = "Error:"

SAFETY_CATEGORIES = (
    types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
)


@dataclass(frozen=True)
class GenerationResult:
    """
    Outcome of one generation call.

    Exactly one of three shapes:
        ok:          text non-empty, error None
        failed:      error set (message starts with ERROR_MARKER), text ""
        no content:  text empty, error None (model returned nothing usable)
    """

    text: str
    error: Optional[str] = None
    model_used: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.text)


class GeminiGenerator:

    def __init__(
        self,
        api_key: str,
        model_name: str,
        max_output_tokens: int,
        temperature: float,
    ):
        if not api_key:
            raise ValueError("A Gemini API key is required")
        self.client = genai.Client(api_key=api_key)
        self.model_name = model_name
        self.config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            safety_settings=[
                types.SafetySetting(
                    category=category,
                    threshold=types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
                )
                for category in SAFETY_CATEGORIES
            ],
        )

    def generate(self, prompt: str) -> GenerationResult:
        """
        Generate text for a prompt, draining the stream completely.

        Returns:
            GenerationResult with the trimmed text, or with error set.
        """
        parts = []
        try:
            stream = self.client.models.generate_content_stream(
                model=self.model_name,
                contents=prompt,
                config=self.config,
            )
            for chunk in stream:
                block_reason = _block_reason_of(chunk)
                if block_reason:
                    logger.error("Gemini blocked the request: %s", block_reason)
                    return GenerationResult(
                        text="",
                        error=f"{ERROR_MARKER} Gemini blocked the request ({block_reason}).",
                        model_used=self.model_name,
                    )
                if chunk.text:
                    parts.append(chunk.text)
        except Exception as e:
            logger.error("Gemini API request failed: %s", e, exc_info=True)
            return GenerationResult(
                text="",
                error=(
                    f"{ERROR_MARKER} Gemini API request failed.\n"
                    f"```\n{e}\n```"
                ),
                model_used=self.model_name,
            )

        text = "".join(parts).strip()
        if not text:
            logger.warning("Gemini returned an empty response")
        return GenerationResult(text=text, model_used=self.model_name)


# ---------------------------------------------------------------------------
# PRIVATE HELPER FUNCTIONS
# ---------------------------------------------------------------------------


def _block_reason_of(chunk) -> Optional[str]:
    """
    Return why Gemini refused to answer, if it did.

    A blocked prompt is reported in prompt_feedback.block_reason; a response
    stopped by the safety filters has a candidate finish_reason of SAFETY.
    """
    feedback = getattr(chunk, "prompt_feedback", None)
    if feedback is not None and getattr(feedback, "block_reason", None):
        return _enum_value(feedback.block_reason)

    for candidate in getattr(chunk, "candidates", None) or []:
        if getattr(candidate, "finish_reason", None) == types.FinishReason.SAFETY:
            return types.FinishReason.SAFETY.value
    return None


def _enum_value(value) -> str:
    return str(getattr(value, "value", value))
