"""Typed objects for one browser agent task session."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class InteractionMode(str, Enum):
    """How page state is represented to the model."""

    VISION = "vision"
    DOM_REF = "dom-ref"
    TEXT_ONLY = "text-only"


class TerminationState(str, Enum):
    """Lifecycle state of a task session."""

    RUNNING = "running"
    DONE = "done"
    ABORTED = "aborted"
    STEP_LIMIT_REACHED = "step-limit-reached"


class Phase(str, Enum):
    """Phase carried by a progress event."""

    THINKING = "thinking"
    ACTING = "acting"
    ERROR = "error"
    FALLBACK = "fallback"
    ABORT = "abort"
    DONE = "done"


@dataclass(frozen=True)
class ElementReference:
    """One interactive element labelled by a snapshot."""

    ref: str
    tag: str
    label: str
    type: Optional[str] = None
    href: Optional[str] = None
    disabled: bool = False
    value: Optional[str] = None

    @classmethod
    def from_snapshot_entry(cls, entry: Dict[str, Any]) -> "ElementReference":
        return cls(
            ref=str(entry.get("ref", "")),
            tag=str(entry.get("tag", "")),
            label=str(entry.get("label", "")),
            type=entry.get("type") or None,
            href=entry.get("href") or None,
            disabled=bool(entry.get("disabled", False)),
            value=entry.get("value"),
        )


@dataclass(frozen=True)
class ToolInvocationRecord:
    """One tool call made by the model, with its validated arguments and outcome."""

    step: int
    call_id: str
    tool_name: str
    arguments: Dict[str, Any]
    result: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_error(self) -> bool:
        return "error" in self.result

    @property
    def is_done(self) -> bool:
        return self.result.get("done") is True


@dataclass
class ProgressEvent:
    """Fire-and-forget notification describing loop state."""

    step: int
    phase: Phase
    message: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "step": self.step,
            "phase": self.phase.value,
            "message": self.message,
        }
        data.update(self.payload)
        return data


@dataclass
class TaskSession:
    """Mutable state of one agent run, owned by the agent loop."""

    task: str
    start_url: str
    mode: InteractionMode
    step: int = 0
    consecutive_errors: int = 0
    history: List[Dict[str, Any]] = field(default_factory=list)
    records: List[ToolInvocationRecord] = field(default_factory=list)
    state: TerminationState = TerminationState.RUNNING
    summary: str = ""
    started_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_running(self) -> bool:
        return self.state is TerminationState.RUNNING

    def finish(self, state: TerminationState, summary: str) -> None:
        self.state = state
        self.summary = summary

    def prune_history(self) -> None:
        """Drop the conversation once the session has terminated."""
        self.history.clear()


@dataclass
class SessionResult:
    """Outcome of a task session."""

    task: str
    start_url: str
    state: TerminationState
    summary: str
    started_at: datetime
    finished_at: datetime
    steps: int = 0
    mode: InteractionMode = InteractionMode.VISION
    final_url: str = ""
    records: List[ToolInvocationRecord] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state is TerminationState.DONE

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    def to_dict(self) -> Dict[str, Any]:
        """External result shape returned to the caller."""
        return {
            "success": self.success,
            "summary": self.summary,
            "state": self.state.value,
            "url": self.final_url,
        }
