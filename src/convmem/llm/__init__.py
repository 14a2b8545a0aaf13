"""LLM access for convmem (OpenRouter via the OpenAI SDK).

Environment Variables:
    OPENROUTER_API_KEY: Required.
    CONVMEM_LLM_MODEL: Optional model override (default: qwen/qwen3-8b).
"""

from convmem.llm.client import (
    DEFAULT_CLASSIFIER_MODEL,
    LOW_LATENCY_PROVIDERS,
    OPENROUTER_BASE_URL,
    OpenRouterClient,
)

__all__ = [
    "DEFAULT_CLASSIFIER_MODEL",
    "LOW_LATENCY_PROVIDERS",
    "OPENROUTER_BASE_URL",
    "OpenRouterClient",
]
