"""Custom exception hierarchy for the browser automation agent."""
from __future__ import annotations

from typing import Any, Optional


class AgentError(Exception):
    """Base exception for all agent-related errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Browser-related exceptions
class BrowserError(AgentError):
    """Base exception for browser automation errors."""

    pass


class NavigationError(BrowserError):
    """Raised when page navigation fails."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        details = {}
        if url:
            details["url"] = url
        if timeout:
            details["timeout"] = timeout
        super().__init__(message, details)
        self.url = url
        self.timeout = timeout


class BrowserNotStartedError(BrowserError):
    """Raised when attempting to use browser before starting."""

    def __init__(self):
        super().__init__("Browser has not been started. Call start() first.")


class ScreenshotError(BrowserError):
    """Raised when screenshot capture fails."""

    pass


class ScriptExecutionError(BrowserError):
    """Raised when a script evaluated in the page throws."""

    def __init__(self, message: str, url: Optional[str] = None):
        details = {"url": url} if url else {}
        super().__init__(message, details)
        self.url = url


# LLM-related exceptions
class LLMError(AgentError):
    """Base exception for LLM/model-related errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class LLMConnectionError(LLMError):
    """Raised when unable to connect to the LLM service."""

    def __init__(self, message: str, base_url: Optional[str] = None):
        details = {"base_url": base_url} if base_url else {}
        super().__init__(message, details)
        self.base_url = base_url
        self.attempts = 1


class LLMResponseError(LLMError):
    """Raised when LLM returns an invalid or unparseable response."""

    def __init__(self, message: str, response: Optional[str] = None, status_code: Optional[int] = None):
        details = {"response_preview": response[:200] if response else None}
        super().__init__(message, details, status_code=status_code)
        self.response = response


class ToolCallError(LLMError):
    """Raised when the model emits tool calls that cannot be interpreted at all."""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        details = {"raw_response": raw_response[:500] if raw_response else None}
        super().__init__(message, details)
        self.raw_response = raw_response


class ModelTimeoutError(LLMError):
    """Raised when model call times out."""

    def __init__(self, timeout: float):
        super().__init__(f"Model call timed out after {timeout}s", {"timeout": timeout})
        self.timeout = timeout


# Tool contract exceptions
class ToolError(AgentError):
    """Base exception for tool dispatch errors."""

    pass


class StaleReferenceError(ToolError):
    """Raised when an element reference no longer belongs to the current snapshot."""

    def __init__(self, ref: str):
        super().__init__(
            f"Element not found: {ref}. Call snapshot() again to get fresh refs.",
            {"ref": ref},
        )
        self.ref = ref


class ToolValidationError(ToolError):
    """Raised when tool arguments fail schema validation."""

    def __init__(self, message: str, tool_name: Optional[str] = None, field: Optional[str] = None):
        details = {}
        if tool_name:
            details["tool"] = tool_name
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.tool_name = tool_name
        self.field = field


# Configuration exceptions
class ConfigurationError(AgentError):
    """Raised when configuration is invalid."""

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """Raised when a required config file is not found."""

    def __init__(self, file_path: str):
        super().__init__(f"Configuration file not found: {file_path}", {"file_path": file_path})
        self.file_path = file_path


class ModelNotAssignedError(ConfigurationError):
    """Raised when no model is assigned to a role."""

    def __init__(self, role: str):
        super().__init__(f'No model assigned to role "{role}"', {"role": role})
        self.role = role


class ModelNotFoundError(ConfigurationError):
    """Raised when a role points at a model id missing from the registry."""

    def __init__(self, model_id: str, role: Optional[str] = None):
        details = {"model_id": model_id}
        if role:
            details["role"] = role
        super().__init__(f'Model "{model_id}" not found in registry', details)
        self.model_id = model_id
        self.role = role


class UnknownProviderError(ConfigurationError):
    """Raised when a model entry names an unsupported provider."""

    def __init__(self, provider: str):
        super().__init__(f"Unknown provider: {provider}", {"provider": provider})
        self.provider = provider
