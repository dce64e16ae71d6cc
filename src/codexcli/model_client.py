"""Model client interface with OpenRouter and Ollama implementations."""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from codexcli.constants import DEFAULT_MODEL_TIMEOUT_S, DEFAULT_OLLAMA_HOST

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class Message:
    """A chat message."""
    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class CompletionResult:
    """Result from a model completion call."""
    content: str
    model: str
    usage: Optional[Dict[str, Any]] = None
    raw_response: Optional[Dict[str, Any]] = None


class ModelClient(ABC):
    """Abstract interface for model clients."""

    @abstractmethod
    def complete(
        self,
        messages: List[Message],
        model: str,
        timeout: float = DEFAULT_MODEL_TIMEOUT_S,
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        """
        Send `messages` to `model` and return the first choice.

        Implementations raise ModelClientError for transport failures, HTTP
        errors and replies without content, never httpx exceptions.
        """
        pass


class ModelClientError(Exception):
    """Error from model client operations."""
    pass


def _post_json(url: str, payload: dict, headers: dict, timeout: float) -> dict:
    """POST a JSON payload and decode the JSON response."""
    with httpx.Client(timeout=timeout) as client:
        response = client.post(url, headers=headers, json=payload)
        response.raise_for_status()
        return response.json()


def _error_message(e: httpx.HTTPStatusError) -> str:
    """Best-effort error text from an API error response."""
    try:
        error = e.response.json().get("error", {})
    except ValueError:
        return str(e)
    if isinstance(error, dict):
        return error.get("message", str(e))
    return str(error) or str(e)


# =============================================================================
# OPENROUTER
# =============================================================================

class OpenRouterClient(ModelClient):
    """Hosted models through OpenRouter's OpenAI-compatible chat endpoint."""

    BASE_URL = "https://openrouter.ai/api/v1/chat/completions"

    def __init__(self, api_key: Optional[str] = None):
        # Falls back to OPENROUTER_API_KEY so the client works without a Config
        self.api_key = api_key or os.environ.get("OPENROUTER_API_KEY")
        if not self.api_key:
            raise ModelClientError("Set OPENROUTER_API_KEY to use the openrouter provider.")

    def _make_request(self, payload: dict, headers: dict, timeout: float) -> dict:
        return _post_json(self.BASE_URL, payload, headers, timeout)

    def complete(
        self,
        messages: List[Message],
        model: str,
        timeout: float = DEFAULT_MODEL_TIMEOUT_S,
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": "codexcli",
        }

        payload: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        logger.debug("OpenRouter request: model=%s, max_tokens=%s", model, max_tokens)

        try:
            data = self._make_request(payload, headers, timeout)
        except httpx.HTTPStatusError as e:
            raise ModelClientError(f"API error: {_error_message(e)}")
        except httpx.TimeoutException:
            raise ModelClientError(
                f"Request timed out after {timeout}s. "
                "Try again or use a faster model."
            )
        except httpx.RequestError as e:
            raise ModelClientError(f"Network error: {e}")
        except ValueError as e:
            raise ModelClientError(f"Invalid JSON in API response: {e}")

        choices = data.get("choices", [])
        if not choices:
            raise ModelClientError("No choices in API response")

        content = choices[0].get("message", {}).get("content", "")
        if not content:
            raise ModelClientError("Empty content in API response")

        return CompletionResult(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
            raw_response=data,
        )


# =============================================================================
# OLLAMA
# =============================================================================

class OllamaClient(ModelClient):
    """Client for a local Ollama server (`ollama serve`).

    API docs: https://github.com/ollama/ollama/blob/main/docs/api.md
    """

    def __init__(self, host: Optional[str] = None):
        self.host = (host or os.environ.get("OLLAMA_HOST") or DEFAULT_OLLAMA_HOST).rstrip("/")
        if not self.host.startswith(("http://", "https://")):
            self.host = f"http://{self.host}"

    @property
    def chat_url(self) -> str:
        return f"{self.host}/api/chat"

    def _make_request(self, payload: dict, timeout: float) -> dict:
        return _post_json(self.chat_url, payload, {"Content-Type": "application/json"}, timeout)

    def complete(
        self,
        messages: List[Message],
        model: str,
        timeout: float = DEFAULT_MODEL_TIMEOUT_S,
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": False,
        }
        if max_tokens is not None:
            payload["options"] = {"num_predict": max_tokens}

        logger.debug("Ollama request: host=%s, model=%s", self.host, model)

        try:
            data = self._make_request(payload, timeout)
        except httpx.HTTPStatusError as e:
            raise ModelClientError(f"Ollama error: {_error_message(e)}")
        except httpx.TimeoutException:
            raise ModelClientError(f"Ollama request timed out after {timeout}s")
        except httpx.RequestError as e:
            raise ModelClientError(
                f"Cannot reach Ollama at {self.host}: {e}. Is `ollama serve` running?"
            )
        except ValueError as e:
            raise ModelClientError(f"Invalid JSON in Ollama response: {e}")

        content = (data.get("message") or {}).get("content", "")
        if not content:
            raise ModelClientError("Empty content in Ollama response")

        usage = None
        if "prompt_eval_count" in data or "eval_count" in data:
            usage = {
                "prompt_tokens": data.get("prompt_eval_count"),
                "completion_tokens": data.get("eval_count"),
            }

        return CompletionResult(
            content=content,
            model=data.get("model", model),
            usage=usage,
            raw_response=data,
        )


# =============================================================================
# FACTORY / TRACING
# =============================================================================

def get_model_client(provider: str, api_key: Optional[str] = None, host: Optional[str] = None) -> ModelClient:
    """Build the client for a provider name ("ollama" or "openrouter")."""
    if provider == "openrouter":
        return OpenRouterClient(api_key=api_key)
    if provider == "ollama":
        return OllamaClient(host=host)
    raise ModelClientError(f"Unknown model provider: {provider}")


def traced_complete(
    client: ModelClient,
    messages: List[Message],
    model: str,
    timeout: float = DEFAULT_MODEL_TIMEOUT_S,
    phase: str = "fix",
    metadata: Optional[Dict[str, Any]] = None,
) -> CompletionResult:
    """
    Wrapper that records each model call as a LangSmith span.

    The span is named "{phase}_{model}" and carries the messages as input and
    content/model/usage as output. Metadata (language, attempt, ...) is
    attached for filtering.
    """
    from langsmith import traceable

    trace_name = f"{phase}_{model.replace('/', '_')}"

    @traceable(
        name=trace_name,
        run_type="llm",
        metadata={"phase": phase, "model": model, **(metadata or {})},
    )
    def _traced_call(messages_input: List[dict], model_name: str) -> dict:
        msg_objects = [Message(role=m["role"], content=m["content"]) for m in messages_input]
        result = client.complete(messages=msg_objects, model=model_name, timeout=timeout)
        return {
            "content": result.content,
            "model": result.model,
            "usage": result.usage,
        }

    output = _traced_call([{"role": m.role, "content": m.content} for m in messages], model)

    return CompletionResult(
        content=output["content"],
        model=output["model"],
        usage=output.get("usage"),
    )
