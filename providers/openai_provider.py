"""
OpenAI classification provider — gpt-4o / gpt-4o-mini vision.

The image is passed by URL (OpenAI fetches it), so no bytes are downloaded
here. "detailed" classification requests use high-detail image processing;
everything else lets the API pick.
"""
from __future__ import annotations

import time
import logging
from typing import Optional

from openai import AsyncOpenAI

from providers.base import (
    SYSTEM_PROMPT, build_user_prompt,
    ClassifierProvider, ContentClassification,
    classification_from_payload, parse_json_response,
)

logger = logging.getLogger(__name__)


class OpenAIProvider(ClassifierProvider):

    def __init__(self, api_key: str, model: str = "gpt-4o-mini"):
        self.name = "openai"
        self.model_id = model
        self._client = AsyncOpenAI(api_key=api_key)

    async def classify(
        self,
        image_url: str,
        options: Optional[dict] = None,
    ) -> ContentClassification:
        options = options or {}
        detail = "high" if options.get("detail_level") == "detailed" else "auto"
        t0 = time.monotonic()

        response = await self._client.chat.completions.create(
            model=self.model_id,
            max_tokens=1500,
            temperature=0.2,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": build_user_prompt(options)},
                        {
                            "type": "image_url",
                            "image_url": {"url": image_url, "detail": detail},
                        },
                    ],
                },
            ],
        )

        latency_ms = int((time.monotonic() - t0) * 1000)
        raw = response.choices[0].message.content
        logger.debug("[%s] %s classified in %dms", self.full_name, image_url[:80], latency_ms)

        data = parse_json_response(raw, self.full_name)
        return classification_from_payload(data, self.full_name)
