"""OpenRouter LLM client (OpenAI-compatible proxy to multiple providers)."""

from edujobs.services.llm_openai import OpenAILLMClient


class OpenRouterLLMClient(OpenAILLMClient):
    """LLM client using the OpenRouter API."""

    BASE_URL = "https://openrouter.ai/api/v1"
    PROVIDER = "openrouter"

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["HTTP-Referer"] = "https://classlite.app"
        headers["X-Title"] = "edujobs"
        return headers
