"""Anthropic LLM client using the official SDK."""

import time

import structlog
from anthropic import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncAnthropic,
    RateLimitError,
)

from edujobs.services.llm_base import (
    BaseLLMClient,
    LLMAPIError,
    LLMError,
    LLMRateLimitError,
    LLMResponse,
    LLMTimeoutError,
    Message,
)

logger = structlog.get_logger(__name__)


class AnthropicLLMClient(BaseLLMClient):
    """LLM client using the Anthropic API directly."""

    def __init__(self, api_key: str, model: str, timeout: int = 120):
        super().__init__(model)
        self.timeout = timeout
        self.client = AsyncAnthropic(api_key=api_key, timeout=timeout)
        self.provider = "anthropic"

    async def generate(
        self,
        *,
        messages: list[Message],
        model: str | None = None,
        max_tokens: int = 4000,
    ) -> LLMResponse:
        model = model or self.model

        # Anthropic takes the system prompt separately, not as a message
        system_parts: list[str] = []
        chat_messages: list[dict] = []

        for msg in messages:
            if msg["role"] == "system":
                system_parts.append(msg["content"])
            else:
                chat_messages.append({"role": msg["role"], "content": msg["content"]})

        system = "\n\n".join(system_parts) if system_parts else ""

        try:
            start = time.perf_counter()
            response = await self.client.messages.create(
                model=model,
                max_tokens=max_tokens,
                system=system,
                messages=chat_messages,
            )
            latency_ms = (time.perf_counter() - start) * 1000
        except APITimeoutError as e:
            logger.warning("anthropic_timeout", model=model, timeout=self.timeout)
            raise LLMTimeoutError(
                f"Anthropic request timed out: {e}",
                provider=self.provider,
                model=model,
                timeout_seconds=self.timeout,
            ) from e
        except RateLimitError as e:
            retry_after = e.response.headers.get("retry-after")
            logger.warning("anthropic_rate_limited", model=model, retry_after=retry_after)
            raise LLMRateLimitError(
                f"Anthropic rate limit (429): {e}",
                provider=self.provider,
                model=model,
                retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else None,
            ) from e
        except APIStatusError as e:
            logger.error("anthropic_api_error", model=model, status_code=e.status_code, error=str(e))
            raise LLMAPIError(
                f"Anthropic API error: {e.status_code} - {e}",
                provider=self.provider,
                model=model,
                status_code=e.status_code,
            ) from e
        except (APIConnectionError, APIError) as e:
            logger.error("anthropic_request_error", model=model, error=str(e))
            raise LLMError(
                f"Anthropic API error: {e}",
                provider=self.provider,
                model=model,
            ) from e

        # Concatenate all text blocks
        text = "".join(
            block.text
            for block in response.content
            if getattr(block, "type", None) == "text"
        )

        usage = {
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
        }

        logger.debug(
            "anthropic_generation_complete",
            model=response.model,
            input_tokens=usage["input_tokens"],
            output_tokens=usage["output_tokens"],
            latency_ms=round(latency_ms, 2),
        )

        return LLMResponse(
            text=text,
            model=response.model,
            provider=self.provider,
            usage=usage,
            latency_ms=latency_ms,
        )
