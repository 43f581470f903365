"""Resolve a logical model role to a callable chat-completions endpoint."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.models import ModelEntry, ModelRoutingConfig, ProviderKeys
from exceptions import (
    LLMConnectionError,
    LLMError,
    LLMResponseError,
    ModelNotAssignedError,
    ModelNotFoundError,
    ModelTimeoutError,
    ToolCallError,
    UnknownProviderError,
)
from messages import truncate_images

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
GOOGLE_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_LMSTUDIO_URL = "http://localhost:1234/v1"
CONNECTION_ATTEMPTS = 3


def _raise_with_attempts(retry_state: RetryCallState) -> None:
    """Re-raise the last connection error once retries run out, recording the attempts made."""
    error = retry_state.outcome.exception()
    error.attempts = retry_state.attempt_number
    raise error


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool call as emitted by the model; arguments are raw JSON text."""

    id: str
    name: str
    arguments: str


@dataclass
class ModelReply:
    """One assistant turn returned by a chat endpoint."""

    content: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    finish_reason: Optional[str] = None

    def to_message(self) -> Dict[str, Any]:
        """Render as an assistant message for the conversation history."""
        message: Dict[str, Any] = {"role": "assistant", "content": self.content or None}
        if self.tool_calls:
            message["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in self.tool_calls
            ]
        return message


class ChatEndpoint(Protocol):
    """What the agent loop needs from a model: one tool-aware completion call."""

    model_id: str
    provider: str

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> ModelReply: ...


class OpenAIChatEndpoint:
    """Chat endpoint over any OpenAI-compatible API."""

    def __init__(
        self,
        model_id: str,
        provider: str = "openai",
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
        timeout: float = 120.0,
        supports_vision: Optional[bool] = None,
        client: Optional[AsyncOpenAI] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.model_id = model_id
        self.provider = provider
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.supports_vision = supports_vision
        self.logger = logger or logging.getLogger("model_router")
        self.client = client or AsyncOpenAI(
            api_key=api_key or "not-needed",
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

    def __repr__(self) -> str:
        return f"OpenAIChatEndpoint(provider={self.provider!r}, model_id={self.model_id!r})"

    @retry(
        retry=retry_if_exception_type(LLMConnectionError),
        stop=stop_after_attempt(CONNECTION_ATTEMPTS),
        wait=wait_exponential(multiplier=1.0, min=1.0, max=8),
        retry_error_callback=_raise_with_attempts,
    )
    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> ModelReply:
        """Call the model; only connection failures are retried here."""
        create_kwargs: Dict[str, Any] = {
            "model": self.model_id,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if tools:
            create_kwargs["tools"] = tools
            create_kwargs["tool_choice"] = "auto"

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"Request to {self.model_id}: {json.dumps(truncate_images(messages), indent=2)[:4000]}")

        try:
            response = await self.client.chat.completions.create(**create_kwargs)
        except APITimeoutError as e:
            raise ModelTimeoutError(self.timeout) from e
        except APIConnectionError as e:
            self.logger.warning(f"Connection to {self.provider} failed: {e}")
            raise LLMConnectionError(f"Could not reach {self.provider}: {e}", base_url=self.base_url) from e
        except APIStatusError as e:
            raise LLMResponseError(
                f"{self.provider} returned HTTP {e.status_code}: {e.message}",
                response=str(e.body) if e.body is not None else None,
                status_code=e.status_code,
            ) from e
        except Exception as e:
            raise LLMError(f"Model call failed: {e}") from e

        if not response.choices:
            raise LLMResponseError("Model returned no choices")

        choice = response.choices[0]
        message = choice.message
        tool_calls = []
        for index, tc in enumerate(message.tool_calls or []):
            function = getattr(tc, "function", None)
            if function is None or not function.name:
                raise ToolCallError(
                    "Model emitted a tool call without a function name",
                    raw_response=str(tc),
                )
            tool_calls.append(
                ToolCallRequest(
                    id=tc.id or f"call_{index}",
                    name=function.name,
                    arguments=function.arguments or "{}",
                )
            )
        return ModelReply(
            content=message.content or "",
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason,
        )


def _ollama_base_url(raw: Optional[str]) -> str:
    base = (raw or "").strip() or DEFAULT_OLLAMA_URL
    base = base.rstrip("/")
    if base.endswith("/api"):
        base = base[: -len("/api")]
    if not base.endswith("/v1"):
        base = f"{base}/v1"
    return base


def create_endpoint(
    entry: ModelEntry,
    keys: ProviderKeys,
    temperature: float = 0.2,
    max_tokens: int = 1024,
) -> OpenAIChatEndpoint:
    """Build the endpoint for a registry entry."""
    common: Dict[str, Any] = {
        "model_id": entry.model_id,
        "provider": entry.provider,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "supports_vision": entry.supports_vision,
    }
    if entry.provider == "openai":
        return OpenAIChatEndpoint(api_key=keys.openai, **common)
    if entry.provider == "openrouter":
        return OpenAIChatEndpoint(base_url=OPENROUTER_BASE_URL, api_key=keys.openrouter, **common)
    if entry.provider == "google":
        return OpenAIChatEndpoint(base_url=GOOGLE_OPENAI_BASE_URL, api_key=keys.google, **common)
    if entry.provider == "ollama":
        return OpenAIChatEndpoint(base_url=_ollama_base_url(keys.ollama_base_url), api_key="ollama", **common)
    if entry.provider == "lmstudio":
        return OpenAIChatEndpoint(
            base_url=(keys.lmstudio_base_url or DEFAULT_LMSTUDIO_URL).rstrip("/"),
            api_key="lm-studio",
            **common,
        )
    raise UnknownProviderError(entry.provider)


def resolve_model(role: str, settings: Any) -> OpenAIChatEndpoint:
    """
    Return the endpoint assigned to `role`.

    Accepts either the root AgentSettings or a ModelRoutingConfig. Raises
    ModelNotAssignedError when the role has no model and ModelNotFoundError
    when the assigned id is missing from the registry.
    """
    routing: ModelRoutingConfig = getattr(settings, "routing", settings)
    model_id = routing.roles.get(role)
    if not model_id:
        raise ModelNotAssignedError(role)

    entry = routing.find(model_id)
    if entry is None:
        raise ModelNotFoundError(model_id, role=role)

    agent_cfg = getattr(settings, "agent", None)
    return create_endpoint(
        entry,
        routing.keys,
        temperature=agent_cfg.temperature if agent_cfg else 0.2,
        max_tokens=agent_cfg.max_tokens if agent_cfg else 1024,
    )
