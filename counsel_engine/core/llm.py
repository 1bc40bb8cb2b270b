"""OpenAI generation client used by every pipeline stage.

Blocking SDK calls are pushed to a worker thread so stages can run several
generations concurrently on the event loop.
"""

import asyncio
import json
import re
import time
from collections import deque
from functools import lru_cache
from typing import Any, TypeVar

from openai import OpenAI
from pydantic import BaseModel, ValidationError

from counsel_engine.core.config import get_settings
from counsel_engine.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

FIX_SCHEMA_PROMPT = """The previous output failed schema validation.
Error details:
{error}

Original invalid output:
{previous_output}

Please fix the output to match the required JSON schema exactly. Output ONLY valid JSON."""

_METRICS_WINDOW = 20
_recent_calls: deque[dict[str, Any]] = deque(maxlen=_METRICS_WINDOW)


class LLMCallError(Exception):
    """Base error for any failed language-model call."""


class GenerationError(LLMCallError):
    """The model call itself failed (transport, auth, rate limit, empty reply)."""


class MalformedOutputError(LLMCallError):
    """The model replied but the text did not parse into the expected shape."""

    def __init__(self, message: str, raw_output: str = ""):
        super().__init__(message)
        self.raw_output = raw_output


@lru_cache(maxsize=1)
def _get_client() -> OpenAI:
    """Get OpenAI client instance (cached singleton)."""
    settings = get_settings()
    return OpenAI(api_key=settings.OPENAI_API_KEY)


def _strip_llm_fences(raw_output: str) -> str:
    """Strip markdown code fences from LLM output.

    Handles: ```json ... ```, ``` ... ```, leading/trailing whitespace.
    """
    cleaned = raw_output.strip()

    fence_match = re.search(r"```(?:json)?\s*\n?(.*?)```", cleaned, re.DOTALL)
    if fence_match:
        return fence_match.group(1).strip()

    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_llm_json(raw_output: str, model: type[T]) -> T:
    """
    Parse LLM output as JSON and validate against a Pydantic model.

    Args:
        raw_output: Raw string from LLM response
        model: Pydantic model class to validate against

    Returns:
        Validated Pydantic model instance

    Raises:
        json.JSONDecodeError: If JSON parsing fails after cleanup
        pydantic.ValidationError: If parsed JSON doesn't match schema
    """
    cleaned = _strip_llm_fences(raw_output)
    parsed = json.loads(cleaned)
    return model.model_validate(parsed)


def _record_call(model: str, started: float, response: Any) -> None:
    usage = getattr(response, "usage", None)
    _recent_calls.append(
        {
            "model": model,
            "duration_ms": int((time.monotonic() - started) * 1000),
            "tokens_input": getattr(usage, "prompt_tokens", 0) or 0,
            "tokens_output": getattr(usage, "completion_tokens", 0) or 0,
        }
    )


def get_recent_metrics() -> list[dict[str, Any]]:
    """Return latency and token counts for the most recent model calls, oldest first."""
    return list(_recent_calls)


def _complete(
    messages: list[dict[str, str]],
    *,
    model: str,
    temperature: float,
    max_tokens: int,
    json_mode: bool,
) -> str:
    """Run one blocking chat completion and return its text."""
    client = _get_client()
    kwargs: dict[str, Any] = {
        "model": model,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "messages": messages,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    started = time.monotonic()
    try:
        response = client.chat.completions.create(**kwargs)
    except Exception as e:
        logger.error(f"Chat completion failed: {e}", extra={"model": model})
        raise GenerationError(f"{model} call failed: {e}") from e

    _record_call(model, started, response)

    content = response.choices[0].message.content if response.choices else None
    if not content:
        raise GenerationError(f"{model} returned an empty response")
    return content


async def generate(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    json_mode: bool = False,
) -> str:
    """
    Generate free text from a system/user prompt pair.

    Raises:
        GenerationError: On transport failure or an empty reply
    """
    settings = get_settings()
    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]
    return await asyncio.to_thread(
        _complete,
        messages,
        model=model or settings.REVIEW_MODEL,
        temperature=settings.LLM_TEMPERATURE if temperature is None else temperature,
        max_tokens=max_tokens or settings.LLM_MAX_TOKENS,
        json_mode=json_mode,
    )


async def generate_structured(
    system_prompt: str,
    user_prompt: str,
    output_model: type[T],
    *,
    model: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> T:
    """
    Generate JSON and validate it into ``output_model``.

    The first invalid reply is sent back once with a fix-to-schema prompt.

    Raises:
        GenerationError: On transport failure
        MalformedOutputError: If the output still fails validation after the retry
    """
    settings = get_settings()
    model_to_use = model or settings.REVIEW_MODEL
    call_kwargs = {
        "model": model_to_use,
        "temperature": settings.LLM_TEMPERATURE if temperature is None else temperature,
        "max_tokens": max_tokens or settings.LLM_MAX_TOKENS,
        "json_mode": True,
    }
    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]

    raw_output = await asyncio.to_thread(_complete, messages, **call_kwargs)
    try:
        return parse_llm_json(raw_output, output_model)
    except (json.JSONDecodeError, ValidationError) as e:
        error_msg = str(e)
        logger.warning(
            f"First {output_model.__name__} attempt failed validation: {error_msg}",
            extra={"model": model_to_use},
        )

    retry_messages = messages + [
        {"role": "assistant", "content": raw_output},
        {
            "role": "user",
            "content": FIX_SCHEMA_PROMPT.format(error=error_msg, previous_output=raw_output),
        },
    ]
    retry_output = await asyncio.to_thread(_complete, retry_messages, **call_kwargs)
    try:
        result = parse_llm_json(retry_output, output_model)
        logger.info(f"{output_model.__name__} retry succeeded")
        return result
    except (json.JSONDecodeError, ValidationError) as e:
        logger.error(f"Second {output_model.__name__} attempt failed validation: {e}")
        raise MalformedOutputError(
            f"Model output could not be validated to {output_model.__name__}",
            raw_output=retry_output,
        ) from e
