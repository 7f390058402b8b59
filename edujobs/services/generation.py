"""Structured generation: prompt the model, extract JSON, validate it."""

import json
import re
from functools import lru_cache
from typing import Any, Optional, TypeVar

import structlog
import tiktoken
from pydantic import BaseModel, ValidationError

from edujobs.services.llm_base import BaseLLMClient, LLMNotConfiguredError

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


class MalformedOutputError(Exception):
    """Model output was not valid JSON for the expected schema. Retryable."""

    retryable = True

    def __init__(self, message: str, raw: str = ""):
        self.raw = raw
        super().__init__(message)


@lru_cache(maxsize=4)
def _encoding(name: str):
    return tiktoken.get_encoding(name)


def truncate_tokens(text: str, max_tokens: int, encoding: str = "cl100k_base") -> str:
    """Cut text to at most ``max_tokens`` tokens."""
    enc = _encoding(encoding)
    tokens = enc.encode(text)
    if len(tokens) <= max_tokens:
        return text
    logger.info("text_truncated", tokens=len(tokens), max_tokens=max_tokens)
    return enc.decode(tokens[:max_tokens])


_FENCE_PATTERNS = [
    r"```json\s*([\s\S]*?)\s*```",
    r"```\s*([\s\S]*?)\s*```",
]


def extract_json(text: str) -> Any:
    """Parse JSON from model output, tolerating markdown code fences.

    Raises:
        MalformedOutputError: if no JSON value can be parsed
    """
    stripped = text.strip()
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    for pattern in _FENCE_PATTERNS:
        match = re.search(pattern, stripped)
        if match:
            try:
                return json.loads(match.group(1))
            except json.JSONDecodeError:
                continue

    match = re.search(r"\{[\s\S]*\}", stripped)
    if match:
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            pass

    raise MalformedOutputError(
        f"Could not parse JSON from model output: {stripped[:200]}", raw=stripped
    )


async def generate_structured(
    llm: Optional[BaseLLMClient],
    prompt: str,
    output_model: type[T],
    system: Optional[str] = None,
    max_tokens: int = 8000,
) -> T:
    """Generate and validate a response against ``output_model``.

    Raises:
        LLMNotConfiguredError: no provider configured (not retryable)
        LLMError: provider failure
        MalformedOutputError: unparsable or schema-invalid output
    """
    if llm is None:
        raise LLMNotConfiguredError("No LLM provider configured")

    text = await llm.generate_text(prompt, system=system, max_tokens=max_tokens)
    data = extract_json(text)
    try:
        return output_model.model_validate(data)
    except ValidationError as e:
        logger.warning(
            "model_output_invalid",
            schema=output_model.__name__,
            errors=e.error_count(),
        )
        raise MalformedOutputError(
            f"Model output failed {output_model.__name__} schema validation: {e.errors()[0]['msg']}",
            raw=text,
        ) from e
