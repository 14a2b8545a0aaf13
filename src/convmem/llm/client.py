"""OpenRouter chat client used for query classification.

Classification asks for a two-token answer, so calls are short and
latency-bound: low max_tokens, near-zero temperature, an explicit per-call
timeout, and provider routing that prefers fast inference hosts.
"""

import logging
import os
from collections.abc import Sequence
from typing import Any

from openai import OpenAI

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

DEFAULT_CLASSIFIER_MODEL = "qwen/qwen3-8b"

# Tried in order; OpenRouter falls back to any other host when all are busy
LOW_LATENCY_PROVIDERS = ("cerebras", "groq", "sambanova")


class OpenRouterClient:
    """Synchronous OpenRouter client (OpenAI SDK with a custom base URL).

    Example:
        client = OpenRouterClient()
        answer = client.complete(prompt, max_tokens=10, timeout=5.0)
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        providers: Sequence[str] = LOW_LATENCY_PROVIDERS,
    ):
        """Initialize the client.

        Args:
            api_key: OpenRouter API key. Defaults to OPENROUTER_API_KEY env var.
            model: Model in OpenRouter "vendor/name" format. Defaults to
                CONVMEM_LLM_MODEL, then qwen/qwen3-8b.
            providers: Preferred inference providers; empty disables routing hints.
        """
        self.api_key = api_key or os.getenv("OPENROUTER_API_KEY")
        if not self.api_key:
            raise ValueError(
                "OpenRouter API key required. Set OPENROUTER_API_KEY environment variable "
                "or pass api_key parameter."
            )

        self.model = model or os.getenv("CONVMEM_LLM_MODEL") or DEFAULT_CLASSIFIER_MODEL
        self.providers = tuple(providers)
        self._client = OpenAI(
            base_url=OPENROUTER_BASE_URL,
            api_key=self.api_key,
            default_headers={"X-Title": "convmem"},
        )

    def _request(
        self,
        prompt: str,
        system: str | None,
        max_tokens: int,
        temperature: float,
        timeout: float | None,
    ) -> dict[str, Any]:
        messages = [{"role": "user", "content": prompt}]
        if system:
            messages.insert(0, {"role": "system", "content": system})

        request: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if timeout is not None:
            request["timeout"] = timeout
        if self.providers:
            request["extra_body"] = {
                "provider": {"order": list(self.providers), "allow_fallbacks": True}
            }
        return request

    def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int = 16,
        temperature: float = 0.1,
        timeout: float | None = None,
    ) -> str:
        """Return the stripped completion text, or "" when the model produced none.

        SDK errors (timeouts, HTTP failures) propagate to the caller.
        """
        request = self._request(prompt, system, max_tokens, temperature, timeout)
        response = self._client.chat.completions.create(**request)

        choice = response.choices[0]
        content = choice.message.content
        if not content:
            logger.warning(f"[LLM] Empty completion from {self.model} (finish_reason={choice.finish_reason})")
            return ""
        return content.strip()
