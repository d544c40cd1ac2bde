# ai_helpers.py
# OpenAI completion wrapper and strict decoding of its JSON answers
import json
import logging
import re
from typing import Optional, Type, TypeVar

import openai
from pydantic import BaseModel, ValidationError

from . import models
from .exceptions import ConfigurationError, LLMGenerationError, LLMResponseDecodeError
from .prompts import RFP_PROMPT

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


class OpenAIChatClient:
    """
    Text completion over the OpenAI chat API: system prompt + user text in,
    text out. The SDK client is built on first use so the app can start
    without a key.
    """

    def __init__(self, api_key: Optional[str], model: str = "gpt-4o-mini", timeout: float = 60.0):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = None

    @property
    def client(self) -> openai.OpenAI:
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError("OPENAI_API_KEY is not set")
            self._client = openai.OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=1)
        return self._client

    def complete(self, system_prompt: str, user_text: str) -> str:
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_text},
                ],
                temperature=0,
                max_tokens=1500,
            )
        except openai.OpenAIError as e:
            raise LLMGenerationError("Failed to generate response from OpenAI", original_exception=e) from e
        content = resp.choices[0].message.content
        if content is None:
            raise LLMGenerationError("OpenAI returned an empty completion")
        return content


def strip_code_fences(text: str) -> str:
    """Drop a surrounding ```json ... ``` (or bare ```) wrapper, if any."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def decode_llm_json(raw: str, model_cls: Type[M]) -> M:
    """
    Turn a raw LLM answer into ``model_cls``.

    Raises:
        LLMResponseDecodeError: not JSON, not an object, or the wrong shape.
    """
    cleaned = strip_code_fences(raw)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise LLMResponseDecodeError(f"LLM returned invalid JSON: {e}", raw_response=raw) from e
    if not isinstance(data, dict):
        raise LLMResponseDecodeError(
            f"LLM returned JSON {type(data).__name__}, expected an object", raw_response=raw)
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise LLMResponseDecodeError(
            f"LLM JSON does not match {model_cls.__name__}: {e.error_count()} error(s)", raw_response=raw) from e


def structure_rfp(text: str, llm) -> models.ParsedRFP:
    raw = llm.complete(RFP_PROMPT, text)
    try:
        return decode_llm_json(raw, models.ParsedRFP)
    except LLMResponseDecodeError:
        logger.error("Failed to parse LLM response for RFP: %r", raw[:500])
        raise
