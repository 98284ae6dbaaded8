"""
Anthropic classification provider — Claude vision models.

Claude accepts image URLs directly as a "url" image source, so the image is
never downloaded by this service.
"""
from __future__ import annotations

import time
import logging
from typing import Optional

import anthropic

from providers.base import (
    SYSTEM_PROMPT, build_user_prompt,
    ClassifierProvider, ContentClassification,
    classification_from_payload, parse_json_response,
)

logger = logging.getLogger(__name__)


class AnthropicProvider(ClassifierProvider):

    def __init__(self, api_key: str, model: str = "claude-3-haiku-20240307"):
        self.name = "anthropic"
        self.model_id = model
        self._client = anthropic.AsyncAnthropic(api_key=api_key)

    async def classify(
        self,
        image_url: str,
        options: Optional[dict] = None,
    ) -> ContentClassification:
        t0 = time.monotonic()

        message = await self._client.messages.create(
            model=self.model_id,
            max_tokens=1500,
            temperature=0.2,
            system=SYSTEM_PROMPT,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {"type": "url", "url": image_url},
                        },
                        {"type": "text", "text": build_user_prompt(options)},
                    ],
                }
            ],
        )

        latency_ms = int((time.monotonic() - t0) * 1000)
        raw = message.content[0].text
        logger.debug("[%s] %s classified in %dms", self.full_name, image_url[:80], latency_ms)

        data = parse_json_response(raw, self.full_name)
        return classification_from_payload(data, self.full_name)
