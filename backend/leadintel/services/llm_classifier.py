# backend/leadintel/services/llm_classifier.py
"""
Model classifier boundary

Wraps an OpenAI-compatible chat endpoint. Every reply is parsed as JSON and
validated against a pydantic model before it reaches scoring or promotion
code. Malformed output gets one retry with a stricter JSON-only instruction;
if that also fails the caller receives None and falls back to a neutral
result.
"""

import json
from typing import Optional, Type, TypeVar
import logging

import pydantic
from openai import AsyncOpenAI, OpenAIError

from leadintel.config import settings
from leadintel.exceptions import MalformedModelOutputError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=pydantic.BaseModel)

STRICT_JSON_INSTRUCTION = (
    "Your previous reply could not be parsed. Respond with ONLY a single valid "
    "JSON object matching the requested schema. No markdown fences, no prose."
)


def strip_code_fences(content: str) -> str:
    """Remove a surrounding ```json ... ``` block if present"""
    cleaned = content.strip()
    if "```" in cleaned:
        start = cleaned.find("```")
        first_newline = cleaned.find("\n", start)
        if first_newline != -1:
            cleaned = cleaned[first_newline + 1:]
        end = cleaned.rfind("```")
        if end != -1:
            cleaned = cleaned[:end]
    return cleaned.strip()


def parse_model_output(content: Optional[str], response_model: Type[T]) -> T:
    if not content:
        raise MalformedModelOutputError("Empty model response")
    try:
        data = json.loads(strip_code_fences(content))
    except json.JSONDecodeError as e:
        raise MalformedModelOutputError(f"Invalid JSON: {e}") from e
    try:
        return response_model.model_validate(data)
    except pydantic.ValidationError as e:
        raise MalformedModelOutputError(f"Schema mismatch: {e.error_count()} errors") from e


class LLMClassifier:
    """Structured classification over chat completions"""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = None,
        fast_model: str = None,
        timeout: float = None,
        max_tokens: int = 2000
    ):
        self.client = client
        self.model = model or settings.LLM_MODEL
        self.fast_model = fast_model or settings.LLM_FAST_MODEL
        self.timeout = timeout or settings.LLM_TIMEOUT_SECONDS
        self.max_tokens = max_tokens

    async def _complete(self, model: str, messages: list, temperature: float) -> Optional[str]:
        response = await self.client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
        )
        if not response.choices:
            return None
        return response.choices[0].message.content

    async def classify(
        self,
        system_prompt: str,
        user_content: str,
        response_model: Type[T],
        fast: bool = False,
        temperature: float = 0.2
    ) -> Optional[T]:
        """
        Returns a validated response_model instance, or None when the model
        is unreachable or its output stays malformed after one retry.
        """
        model = self.fast_model if fast else self.model
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]

        for attempt in range(2):
            try:
                content = await self._complete(model, messages, temperature)
            except OpenAIError as e:
                logger.error(f"❌ Model call failed ({model}): {e}")
                return None

            try:
                return parse_model_output(content, response_model)
            except MalformedModelOutputError as e:
                logger.warning(
                    f"⚠️ Malformed {response_model.__name__} output "
                    f"(attempt {attempt + 1}/2): {e.message}"
                )
                messages = messages + [
                    {"role": "assistant", "content": content or ""},
                    {"role": "user", "content": STRICT_JSON_INSTRUCTION},
                ]
                temperature = 0.0

        logger.error(f"❌ Giving up on {response_model.__name__}: output still malformed after retry")
        return None


def create_llm_classifier(api_key: str = None, base_url: str = None) -> Optional[LLMClassifier]:
    """Factory; None when no API key is configured"""
    api_key = api_key or settings.LLM_API_KEY
    if not api_key:
        logger.info("LLM_API_KEY not configured, model classification disabled")
        return None
    client = AsyncOpenAI(api_key=api_key, base_url=base_url or settings.LLM_BASE_URL)
    return LLMClassifier(client)
