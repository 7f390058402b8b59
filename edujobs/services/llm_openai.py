"""OpenAI chat-completions client over httpx.

Also the base for other OpenAI-compatible endpoints (see llm_openrouter).
"""

import time

import httpx
import structlog

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


class OpenAILLMClient(BaseLLMClient):
    """LLM client using the OpenAI API."""

    BASE_URL = "https://api.openai.com/v1"
    PROVIDER = "openai"

    def __init__(self, api_key: str, model: str, timeout: int = 120):
        super().__init__(model)
        self.api_key = api_key
        self.timeout = timeout
        self.provider = self.PROVIDER

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def generate(
        self,
        *,
        messages: list[Message],
        model: str | None = None,
        max_tokens: int = 4000,
    ) -> LLMResponse:
        model = model or self.model
        api_messages = [
            {"role": msg["role"], "content": msg["content"]} for msg in messages
        ]

        try:
            start = time.perf_counter()
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.BASE_URL}/chat/completions",
                    headers=self._headers(),
                    json={
                        "model": model,
                        "messages": api_messages,
                        "max_tokens": max_tokens,
                    },
                )
                response.raise_for_status()
                data = response.json()
            latency_ms = (time.perf_counter() - start) * 1000
        except httpx.TimeoutException as e:
            logger.warning(f"{self.provider}_timeout", model=model, timeout=self.timeout)
            raise LLMTimeoutError(
                f"{self.provider} request timed out",
                provider=self.provider,
                model=model,
                timeout_seconds=self.timeout,
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            error_body = ""
            try:
                error_body = e.response.json().get("error", {}).get("message", "")
            except ValueError:
                error_body = e.response.text[:200]
            logger.error(
                f"{self.provider}_http_error",
                model=model,
                status_code=status,
                error=error_body or str(e),
            )
            if status == 429:
                retry_after = e.response.headers.get("retry-after")
                raise LLMRateLimitError(
                    f"{self.provider} rate limit (429): {error_body}",
                    provider=self.provider,
                    model=model,
                    retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else None,
                ) from e
            raise LLMAPIError(
                f"{self.provider} API error: {status} - {error_body or e}",
                provider=self.provider,
                model=model,
                status_code=status,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"{self.provider}_request_error", model=model, error=str(e))
            raise LLMError(
                f"{self.provider} request failed: {e}",
                provider=self.provider,
                model=model,
            ) from e

        choices = data.get("choices", [])
        if not choices:
            raise LLMError(
                f"No response from {self.provider}",
                provider=self.provider,
                model=model,
            )

        text = choices[0].get("message", {}).get("content", "") or ""

        usage_data = data.get("usage", {})
        usage = None
        if usage_data:
            usage = {
                "input_tokens": usage_data.get("prompt_tokens", 0),
                "output_tokens": usage_data.get("completion_tokens", 0),
            }

        actual_model = data.get("model", model)
        logger.debug(
            f"{self.provider}_generation_complete",
            model=actual_model,
            input_tokens=usage.get("input_tokens") if usage else None,
            output_tokens=usage.get("output_tokens") if usage else None,
            latency_ms=round(latency_ms, 2),
        )

        return LLMResponse(
            text=text,
            model=actual_model,
            provider=self.provider,
            usage=usage,
            latency_ms=latency_ms,
        )
