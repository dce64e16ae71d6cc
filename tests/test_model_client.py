"""Tests for the model clients (no network; requests are monkeypatched)."""

import httpx
import pytest

from codexcli.model_client import (
    CompletionResult,
    Message,
    ModelClientError,
    OllamaClient,
    OpenRouterClient,
    get_model_client,
)

MESSAGES = [Message(role="system", content="be brief"), Message(role="user", content="hi")]


def _status_error(status, body):
    request = httpx.Request("POST", "https://example.test/api")
    response = httpx.Response(status, json=body, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


class TestOpenRouterClient:
    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        with pytest.raises(ModelClientError):
            OpenRouterClient()

    def test_reads_key_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
        assert OpenRouterClient().api_key == "sk-test"

    def test_complete_parses_choice(self, monkeypatch):
        client = OpenRouterClient(api_key="sk-test")
        seen = {}

        def fake_request(payload, headers, timeout):
            seen.update(payload=payload, headers=headers, timeout=timeout)
            return {
                "model": "openai/gpt-4o-mini",
                "choices": [{"message": {"content": "hello"}}],
                "usage": {"total_tokens": 5},
            }

        monkeypatch.setattr(client, "_make_request", fake_request)
        result = client.complete(MESSAGES, "openai/gpt-4o-mini", timeout=3, max_tokens=50)

        assert isinstance(result, CompletionResult)
        assert result.content == "hello"
        assert result.usage == {"total_tokens": 5}
        assert seen["headers"]["Authorization"] == "Bearer sk-test"
        assert seen["payload"]["max_tokens"] == 50
        assert seen["payload"]["messages"][1] == {"role": "user", "content": "hi"}
        assert seen["timeout"] == 3

    def test_empty_choices_raise(self, monkeypatch):
        client = OpenRouterClient(api_key="sk-test")
        monkeypatch.setattr(client, "_make_request", lambda *a: {"choices": []})
        with pytest.raises(ModelClientError, match="No choices"):
            client.complete(MESSAGES, "m")

    def test_http_error_message_extracted(self, monkeypatch):
        client = OpenRouterClient(api_key="sk-test")

        def fail(*args):
            raise _status_error(401, {"error": {"message": "Invalid API key"}})

        monkeypatch.setattr(client, "_make_request", fail)
        with pytest.raises(ModelClientError, match="Invalid API key"):
            client.complete(MESSAGES, "m")

    def test_timeout_wrapped(self, monkeypatch):
        client = OpenRouterClient(api_key="sk-test")

        def fail(*args):
            raise httpx.ReadTimeout("slow")

        monkeypatch.setattr(client, "_make_request", fail)
        with pytest.raises(ModelClientError, match="timed out"):
            client.complete(MESSAGES, "m", timeout=1)


class TestOllamaClient:
    def test_host_normalised(self, monkeypatch):
        monkeypatch.delenv("OLLAMA_HOST", raising=False)
        assert OllamaClient().chat_url == "http://localhost:11434/api/chat"
        assert OllamaClient("gpu-box:11434/").chat_url == "http://gpu-box:11434/api/chat"

    def test_host_from_env(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_HOST", "http://ollama.internal:8080")
        assert OllamaClient().host == "http://ollama.internal:8080"

    def test_complete_non_streaming(self, monkeypatch):
        client = OllamaClient("http://localhost:11434")
        seen = {}

        def fake_request(payload, timeout):
            seen["payload"] = payload
            return {
                "model": "llama3.2",
                "message": {"role": "assistant", "content": "```python\nprint(1)\n```"},
                "prompt_eval_count": 10,
                "eval_count": 4,
            }

        monkeypatch.setattr(client, "_make_request", fake_request)
        result = client.complete(MESSAGES, "llama3.2", max_tokens=64)

        assert result.content.startswith("```python")
        assert result.usage == {"prompt_tokens": 10, "completion_tokens": 4}
        assert seen["payload"]["stream"] is False
        assert seen["payload"]["options"] == {"num_predict": 64}

    def test_unreachable_server(self, monkeypatch):
        client = OllamaClient("http://localhost:1")

        def fail(*args):
            raise httpx.ConnectError("refused")

        monkeypatch.setattr(client, "_make_request", fail)
        with pytest.raises(ModelClientError, match="ollama serve"):
            client.complete(MESSAGES, "llama3.2")

    def test_empty_content(self, monkeypatch):
        client = OllamaClient("http://localhost:11434")
        monkeypatch.setattr(client, "_make_request", lambda *a: {"message": {"content": ""}})
        with pytest.raises(ModelClientError, match="Empty content"):
            client.complete(MESSAGES, "llama3.2")


class TestFactory:
    def test_providers(self):
        assert isinstance(get_model_client("ollama", host="localhost:11434"), OllamaClient)
        assert isinstance(get_model_client("openrouter", api_key="sk"), OpenRouterClient)

    def test_unknown_provider(self):
        with pytest.raises(ModelClientError):
            get_model_client("carrier-pigeon")
