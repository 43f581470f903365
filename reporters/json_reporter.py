"""JSON trace report generator for browser agent sessions."""
from __future__ import annotations

import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from reporters.base import BaseReporter, ReportFormat
from session_types import SessionResult, TerminationState, ToolInvocationRecord

RESULT_PREVIEW_CHARS = 1000


def _slugify(text: str, limit: int = 40) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:limit].rstrip("-") or "session"


class JSONReporter(BaseReporter):
    """Generate machine-readable JSON session traces."""

    def __init__(self, result_preview_chars: int = RESULT_PREVIEW_CHARS):
        self.result_preview_chars = result_preview_chars

    @property
    def format(self) -> ReportFormat:
        return ReportFormat.JSON

    def _record_to_dict(self, record: ToolInvocationRecord) -> Dict[str, Any]:
        """Convert a ToolInvocationRecord to a JSON-serializable dict."""
        result = json.dumps(record.result, default=str)
        if len(result) > self.result_preview_chars:
            result = result[: self.result_preview_chars] + "…"
        return {
            "step": record.step,
            "call_id": record.call_id,
            "tool": record.tool_name,
            "arguments": record.arguments,
            "result": result,
            "error": record.is_error,
            "timestamp": record.timestamp.isoformat(),
        }

    def _result_to_dict(self, result: SessionResult) -> Dict[str, Any]:
        """Convert SessionResult to JSON-serializable dict."""
        return {
            "session": {
                "task": result.task,
                "start_url": result.start_url,
                "mode": result.mode.value,
            },
            "result": {
                "success": result.success,
                "state": result.state.value,
                "summary": result.summary,
                "final_url": result.final_url,
                "steps": result.steps,
                "started_at": result.started_at.isoformat(),
                "finished_at": result.finished_at.isoformat(),
                "duration_seconds": result.duration_seconds,
                "total_tool_calls": len(result.records),
                "tool_errors": sum(1 for r in result.records if r.is_error),
            },
            "tool_calls": [self._record_to_dict(r) for r in result.records],
        }

    def generate(self, result: SessionResult, output_dir: Path) -> Path:
        """Generate JSON trace for a single session."""
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.utcnow().strftime("%Y%m%d-%H%M%S")
        filename = f"{_slugify(result.task)}-{timestamp}.json"
        target = output_dir / filename

        report_data = {
            "generated_at": datetime.utcnow().isoformat(),
            "report_version": "1.0",
            "sessions": [self._result_to_dict(result)],
            "summary": {
                "total": 1,
                "done": 1 if result.success else 0,
                "not_done": 0 if result.success else 1,
            },
        }

        target.write_text(json.dumps(report_data, indent=2), encoding="utf-8")
        return target

    def generate_suite(self, results: List[SessionResult], output_dir: Path) -> Path:
        """Generate combined JSON report for multiple sessions."""
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.utcnow().strftime("%Y%m%d-%H%M%S")
        filename = f"suite-{timestamp}.json"
        target = output_dir / filename

        done = sum(1 for r in results if r.success)
        by_state = {state.value: 0 for state in TerminationState if state is not TerminationState.RUNNING}
        for r in results:
            by_state[r.state.value] = by_state.get(r.state.value, 0) + 1

        # Calculate timing stats
        durations = [r.duration_seconds for r in results]
        total_duration = sum(durations)
        avg_duration = total_duration / len(durations) if durations else 0

        report_data = {
            "generated_at": datetime.utcnow().isoformat(),
            "report_version": "1.0",
            "sessions": [self._result_to_dict(r) for r in results],
            "summary": {
                "total": len(results),
                "done": done,
                "not_done": len(results) - done,
                "by_state": by_state,
                "total_duration_seconds": round(total_duration, 2),
                "avg_duration_seconds": round(avg_duration, 2),
                "total_steps": sum(r.steps for r in results),
            },
            "unfinished_sessions": [
                {"task": r.task, "state": r.state.value, "summary": r.summary}
                for r in results if not r.success
            ],
        }

        target.write_text(json.dumps(report_data, indent=2), encoding="utf-8")
        return target
