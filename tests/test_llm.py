"""Tests for the OpenRouter LLM client."""

import os
from unittest.mock import MagicMock, patch

import pytest

from convmem.llm import (
    DEFAULT_CLASSIFIER_MODEL,
    LOW_LATENCY_PROVIDERS,
    OPENROUTER_BASE_URL,
    OpenRouterClient,
)


def _response(content, finish_reason="stop"):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.choices[0].finish_reason = finish_reason
    return response


@pytest.fixture
def mock_openai():
    """Patch the OpenAI SDK class and yield the instance the client will use."""
    with patch.dict(os.environ, {"OPENROUTER_API_KEY": "test-key"}):
        with patch("convmem.llm.client.OpenAI") as mock_openai_class:
            yield mock_openai_class


class TestOpenRouterClient:
    """Tests for OpenRouterClient."""

    def test_client_initialization(self, mock_openai):
        """Client points the OpenAI SDK at OpenRouter."""
        OpenRouterClient()

        call_kwargs = mock_openai.call_args[1]
        assert call_kwargs["base_url"] == OPENROUTER_BASE_URL
        assert call_kwargs["api_key"] == "test-key"
        assert call_kwargs["default_headers"]["X-Title"] == "convmem"

    def test_client_requires_api_key(self):
        with pytest.raises(ValueError, match="OpenRouter API key required"):
            OpenRouterClient()

    def test_model_selection(self, mock_openai, monkeypatch):
        assert OpenRouterClient().model == DEFAULT_CLASSIFIER_MODEL
        assert OpenRouterClient(model="openai/gpt-4o-mini").model == "openai/gpt-4o-mini"

        monkeypatch.setenv("CONVMEM_LLM_MODEL", "meta-llama/llama-3.1-8b-instruct")
        assert OpenRouterClient().model == "meta-llama/llama-3.1-8b-instruct"

    def test_complete_request(self, mock_openai):
        sdk = mock_openai.return_value
        sdk.chat.completions.create.return_value = _response(" GENERAL CROSS_SESSION\n")

        result = OpenRouterClient().complete("prompt", max_tokens=10, timeout=2.5)

        assert result == "GENERAL CROSS_SESSION"
        kwargs = sdk.chat.completions.create.call_args[1]
        assert kwargs["max_tokens"] == 10
        assert kwargs["timeout"] == 2.5
        assert kwargs["extra_body"]["provider"]["order"] == list(LOW_LATENCY_PROVIDERS)
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]

    def test_complete_without_timeout_or_routing(self, mock_openai):
        sdk = mock_openai.return_value
        sdk.chat.completions.create.return_value = _response("ok")

        OpenRouterClient(providers=()).complete("prompt", system="be brief")

        kwargs = sdk.chat.completions.create.call_args[1]
        assert "timeout" not in kwargs
        assert "extra_body" not in kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "be brief"}

    def test_empty_response_returns_empty_string(self, mock_openai):
        sdk = mock_openai.return_value
        sdk.chat.completions.create.return_value = _response(None, finish_reason="length")

        assert OpenRouterClient().complete("prompt") == ""

    def test_sdk_errors_propagate(self, mock_openai):
        sdk = mock_openai.return_value
        sdk.chat.completions.create.side_effect = TimeoutError("slow")

        with pytest.raises(TimeoutError):
            OpenRouterClient().complete("prompt")
