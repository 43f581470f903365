"""Capability negotiation: classify provider failures and downgrade the interaction mode."""
from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any, Optional

from session_types import InteractionMode


class ErrorCause(str, Enum):
    """Likely reason behind a failed model call."""

    VISION_UNSUPPORTED = "vision-unsupported"
    RATE_LIMITED = "rate-limited"
    TOOL_CALL_UNSUPPORTED = "tool-call-unsupported"
    TRANSPORT = "transport"
    UNKNOWN = "unknown"


VISION_MARKERS = (
    "does not support image",
    "doesn't support image",
    "image input",
    "image_url",
    "image content",
    "images are not supported",
    "image is not supported",
    "support vision",
    "vision is not supported",
    "vision input",
    "multimodal",
    "multi-modal",
    "unsupported content type",
)

RATE_LIMIT_MARKERS = (
    "rate limit",
    "rate-limit",
    "ratelimit",
    "too many requests",
    "quota",
    "overloaded",
    "capacity",
    "resource_exhausted",
)

TOOL_CALL_MARKERS = (
    "does not support tools",
    "doesn't support tools",
    "tools are not supported",
    "tool use is not supported",
    "tool calling",
    "tool_choice",
    "function calling",
    "function_call",
    "no endpoints found that support tool use",
)

TRANSPORT_MARKERS = (
    "could not reach",
    "connection error",
    "connection refused",
    "connection reset",
    "timed out",
)

_STATUS_RE = re.compile(r"\b(?:status(?:\s*code)?|http)[\s:=]*(\d{3})\b", re.IGNORECASE)


def classify_error(text: str, status_code: Optional[int] = None) -> ErrorCause:
    """Map raw provider error text (and status code) to a small set of causes."""
    lowered = (text or "").lower()
    if any(marker in lowered for marker in VISION_MARKERS):
        return ErrorCause.VISION_UNSUPPORTED
    if any(marker in lowered for marker in TOOL_CALL_MARKERS):
        return ErrorCause.TOOL_CALL_UNSUPPORTED
    if status_code == 429 or any(marker in lowered for marker in RATE_LIMIT_MARKERS):
        return ErrorCause.RATE_LIMITED
    if any(marker in lowered for marker in TRANSPORT_MARKERS):
        return ErrorCause.TRANSPORT
    return ErrorCause.UNKNOWN


def _body_text(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, (dict, list)):
        return json.dumps(body, default=str)
    return str(body)


def extract_error_details(exc: BaseException) -> str:
    """Collect message and provider response bodies across the exception chain."""
    parts: list[str] = []
    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        message = getattr(current, "message", None) or str(current)
        if message and message not in parts:
            parts.append(message)
        body = _body_text(getattr(current, "body", None))
        if body and body not in parts:
            parts.append(body)
        current = current.__cause__ or current.__context__
    return " ".join(parts)


def extract_status_code(exc: BaseException) -> Optional[int]:
    """Find an HTTP status code on the exception chain or in its text."""
    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        status = getattr(current, "status_code", None)
        if isinstance(status, int):
            return status
        current = current.__cause__ or current.__context__
    match = _STATUS_RE.search(extract_error_details(exc))
    if match:
        return int(match.group(1))
    return None


class CapabilityNegotiator:
    """Tracks the session's interaction mode; vision can only ever be given up."""

    def __init__(
        self,
        mode: InteractionMode = InteractionMode.VISION,
        logger: Optional[logging.Logger] = None,
    ):
        self._mode = mode
        self.downgraded = False
        self.logger = logger or logging.getLogger("capability")

    @property
    def mode(self) -> InteractionMode:
        return self._mode

    @property
    def uses_vision(self) -> bool:
        return self._mode is InteractionMode.VISION

    def observe_failure(self, exc: BaseException) -> tuple[ErrorCause, bool]:
        """Classify a failed model call; returns (cause, whether the mode was downgraded)."""
        cause = classify_error(extract_error_details(exc), extract_status_code(exc))
        if cause is ErrorCause.VISION_UNSUPPORTED and self.uses_vision:
            self.downgrade()
            return cause, True
        return cause, False

    def downgrade(self) -> None:
        """Switch permanently from screenshots to the text-only representation."""
        if self._mode is InteractionMode.VISION:
            self.logger.warning("Model rejected image input; switching to text-only mode")
            self._mode = InteractionMode.TEXT_ONLY
            self.downgraded = True
