"""External completion service.

The governance core only needs ``generate(prompt, content) -> str`` where
the text is a JSON object. Timeouts belong to the client here, and there
are no retries: a failure is reported to the trace as-is.
"""

import asyncio
import json
import logging
from typing import Protocol

import openai

from giftghost.config import Settings
from giftghost.errors import CompletionError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are GiftGhost, a gift recommendation expert.
Read the description of the gift recipient and return a JSON object:

{
  "persona": "3-5 word archetype",
  "pain_point": "1-2 sentences",
  "obsession": "1-2 sentences",
  "gift_recommendation": {
    "item": "specific product with brand and model",
    "reason": "2-3 sentences",
    "buy_link": "search URL for the item",
    "price_range": "approximate price range"
  }
}"""

MODE_INSTRUCTIONS = {
    "DETECTIVE": "The input is content scraped from the recipient's social profile.",
    "LISTENER": "The input is free-form notes about the recipient.",
    "INTERVIEW": "The input is answers to three short interview questions.",
}


def build_prompt(mode: str) -> str:
    instruction = MODE_INSTRUCTIONS.get(mode, MODE_INSTRUCTIONS["INTERVIEW"])
    return f"{SYSTEM_PROMPT}\n\n{instruction}"


def build_user_content(mode: str, content: str) -> str:
    if mode == "DETECTIVE":
        return f"CONTENT FROM LINK:\n{content}"
    if mode == "LISTENER":
        return f"USER'S NOTES:\n{content}"
    return content


class CompletionService(Protocol):
    async def generate(self, prompt: str, content: str) -> str:
        """Return the model's raw JSON text or raise CompletionError."""
        ...


class OpenAICompletionService:
    """Chat completion in JSON mode."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o",
        timeout: float = 60.0,
        temperature: float = 0.7,
    ):
        self.model = model
        self.temperature = temperature
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

    async def generate(self, prompt: str, content: str) -> str:
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": prompt},
                    {"role": "user", "content": content},
                ],
            )
        except openai.APIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise CompletionError(f"Completion request failed: {e}") from e

        text = completion.choices[0].message.content if completion.choices else None
        if not text:
            raise CompletionError("Completion returned no content")
        return text


class MockCompletionService:
    """Canned response for local development and tests."""

    def __init__(self, delay_seconds: float = 0.0):
        self.delay_seconds = delay_seconds

    async def generate(self, prompt: str, content: str) -> str:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        return json.dumps(
            {
                "persona": "The Quiet Curator",
                "pain_point": "Always busy looking after everyone else.",
                "obsession": "Slow mornings with a good book and better coffee.",
                "gift_recommendation": {
                    "item": "Fellow Stagg EKG Electric Kettle",
                    "reason": "Turns the morning ritual into something special.",
                    "buy_link": "https://www.google.com/search?q=Fellow+Stagg+EKG",
                    "price_range": "$150-170",
                },
            }
        )


def create_completion_service(settings: Settings) -> CompletionService:
    if settings.mock_mode or not settings.openai_api_key:
        if not settings.mock_mode:
            logger.warning("OPENAI_API_KEY not configured, using mock completions")
        return MockCompletionService()
    return OpenAICompletionService(
        api_key=settings.openai_api_key,
        base_url=settings.openai_api_base_url,
        model=settings.openai_model,
        timeout=settings.openai_timeout_seconds,
    )
