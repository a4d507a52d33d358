"""Prompt enhancement through the OpenAI chat completions API."""

import logging
from typing import Optional

import openai

from lorastudio.config import Settings, get_settings

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are an expert at enhancing image generation prompts. Your task is to take a "
    "basic prompt and make it more detailed and effective for AI image generation. "
    "Focus on adding details about lighting, composition, style, and other visual "
    "elements. Keep the original intent of the prompt intact."
)


class PromptEnhancer:
    """Rewrites a user prompt with more visual detail.

    Errors from the API are raised to the caller; deciding to fall back to
    the original prompt is the caller's business.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[openai.AsyncOpenAI] = None,
    ):
        self._settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> openai.AsyncOpenAI:
        """Lazy initialization of the OpenAI client."""
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=self._settings.openai_api_key.get_secret_value() or None,
                timeout=self._settings.openai_timeout_seconds,
            )
        return self._client

    async def enhance(self, prompt: str) -> str:
        """
        Return an enhanced version of ``prompt``.

        Raises:
            openai.OpenAIError: the API call failed
            ValueError: the API answered with no text
        """
        response = await self.client.chat.completions.create(
            model=self._settings.openai_model,
            messages=[
                {"role": "system", "content": SYSTEM_INSTRUCTION},
                {"role": "user", "content": f'Enhance this image generation prompt: "{prompt}"'},
            ],
            max_tokens=200,
        )

        content = None
        if response.choices:
            content = response.choices[0].message.content
        if not content or not content.strip():
            raise ValueError("Prompt enhancement returned an empty response")

        enhanced = content.strip().strip('"').strip()
        logger.info(f"Prompt enhanced: {len(prompt)} -> {len(enhanced)} chars")
        return enhanced


_enhancer: Optional[PromptEnhancer] = None


def get_prompt_enhancer() -> PromptEnhancer:
    global _enhancer
    if _enhancer is None:
        _enhancer = PromptEnhancer()
    return _enhancer
