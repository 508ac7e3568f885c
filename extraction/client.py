"""Extraction call - OCR plus language-model structuring.

The classifier depends only on the ExtractionClient protocol so tests can
substitute a deterministic fake. OpenAIExtractionClient is the production
implementation (GPT-4o vision / JSON mode).
"""

import asyncio
import base64
import json
from typing import Any, Dict, List, Optional, Protocol, Union

import openai

from core.errors import ExtractionFailed
from core.observability.logging import get_logger
from extraction.prompts import SYSTEM_PROMPT, build_prompt


logger = get_logger(__name__)

ExtractionContent = Union[str, bytes, List[bytes]]
ExtractionResponse = Union[Dict[str, Any], str]


class ExtractionClient(Protocol):
    """Protocol for the external extraction call.

    ``content`` is text, one image, or a list of page images. The response is
    either an already-parsed mapping or the raw JSON text returned by the
    model, shaped as ``{documentType, confidence, fields}``.

    Implementations raise ExtractionFailed on network errors and timeouts.
    """

    async def extract(
        self,
        content: ExtractionContent,
        mime_type: str,
        target_schema: Optional[str] = None,
    ) -> ExtractionResponse:
        ...


def parse_json_str(raw_text: str) -> dict:
    """Parse JSON from LLM response, extracting JSON block if needed."""
    try:
        return json.loads(raw_text)
    except json.JSONDecodeError:
        start = raw_text.find("{")
        end = raw_text.rfind("}")
        if start >= 0 and end > start:
            return json.loads(raw_text[start:end + 1])
        raise


def _image_part(data: bytes, mime_type: str) -> Dict[str, Any]:
    b64 = base64.b64encode(data).decode("ascii")
    return {
        "type": "image_url",
        "image_url": {"url": f"data:{mime_type};base64,{b64}", "detail": "high"},
    }


class OpenAIExtractionClient:
    """Extraction via the OpenAI chat completions API.

    Example:
        client = OpenAIExtractionClient(api_key=settings.openai_api_key)
        response = await client.extract(text, "text/plain", "purchase_order")
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        timeout_s: float = 120.0,
        max_attempts: int = 5,
        rate_limit_wait_s: float = 60.0,
    ):
        self.model = model
        self.max_attempts = max_attempts
        self.rate_limit_wait_s = rate_limit_wait_s
        self._client = openai.AsyncOpenAI(api_key=api_key, timeout=timeout_s)

    def _build_messages(
        self,
        content: ExtractionContent,
        mime_type: str,
        target_schema: Optional[str],
    ) -> List[Dict[str, Any]]:
        prompt = build_prompt(target_schema)

        if isinstance(content, str):
            user_content: Any = f"{prompt}\n\n--- DOCUMENT ---\n{content}"
        else:
            images = content if isinstance(content, list) else [content]
            user_content = [{"type": "text", "text": prompt}]
            user_content.extend(_image_part(img, mime_type) for img in images)

        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_content},
        ]

    async def extract(
        self,
        content: ExtractionContent,
        mime_type: str,
        target_schema: Optional[str] = None,
    ) -> ExtractionResponse:
        """Run one extraction pass and return the raw JSON text."""
        messages = self._build_messages(content, mime_type, target_schema)

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self._client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=0,
                    max_tokens=4096,
                    response_format={"type": "json_object"},
                )
                return response.choices[0].message.content or ""
            except openai.RateLimitError:
                logger.warning(
                    f"Rate limited, waiting {self.rate_limit_wait_s}s",
                    extra_fields={"attempt": attempt, "max_attempts": self.max_attempts},
                )
                await asyncio.sleep(self.rate_limit_wait_s)
            except openai.APITimeoutError:
                logger.warning("Extraction call timed out", extra_fields={"attempt": attempt})
                await asyncio.sleep(min(10.0, 2.0 ** attempt))
            except openai.APIConnectionError as e:
                raise ExtractionFailed(f"Extraction call failed: {e}") from e
            except openai.APIStatusError as e:
                raise ExtractionFailed(f"Extraction call returned {e.status_code}: {e.message}") from e

        raise ExtractionFailed(f"Extraction failed after {self.max_attempts} attempts")
