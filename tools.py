"""Closed set of model-facing browser tools with validated arguments."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from action_executor import ActionExecutor
from exceptions import AgentError, ToolValidationError
from page_inspector import PageInspector
from session_types import ToolInvocationRecord


class ToolName(str, Enum):
    SNAPSHOT = "snapshot"
    NAVIGATE = "navigate"
    CLICK = "click"
    FILL = "fill"
    GET_PAGE_TEXT = "getPageText"
    SCROLL = "scroll"
    EXECUTE_JS = "executeJS"
    WAIT_FOR = "waitFor"
    DONE = "done"


class ToolArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SnapshotArgs(ToolArgs):
    pass


class NavigateArgs(ToolArgs):
    url: str = Field(
        ...,
        min_length=1,
        description="Full URL to load. A bare domain gets https://; plain text becomes a web search.",
    )


class ClickArgs(ToolArgs):
    ref: str = Field(..., min_length=1, description='Element ref from the latest snapshot, e.g. "e5"')
    wait_ms: Optional[int] = Field(
        None,
        alias="waitMs",
        ge=0,
        description="Milliseconds to wait after clicking (default 800)",
    )


class FillArgs(ToolArgs):
    ref: str = Field(..., min_length=1, description="Ref of the input or textarea from the latest snapshot")
    text: str = Field(..., description="Text to enter; replaces the current value")
    press_enter: bool = Field(False, alias="pressEnter", description="Press Enter after typing to submit")


class GetPageTextArgs(ToolArgs):
    pass


class ScrollArgs(ToolArgs):
    direction: Literal["up", "down"] = Field(..., description="Scroll direction")
    amount: int = Field(400, ge=1, le=10000, description="Pixels to scroll (default 400)")


class ExecuteJSArgs(ToolArgs):
    script: str = Field(
        ...,
        min_length=1,
        description="JavaScript to run: an expression such as document.title, an arrow function, "
        "or a function body that uses return",
    )


class WaitForArgs(ToolArgs):
    ms: int = Field(..., ge=0, description="Milliseconds to wait (max 8000)")


class DoneArgs(ToolArgs):
    summary: str = Field(..., description="Clear summary of what was accomplished and what was found")


Handler = Callable[[Any], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    args_model: Type[ToolArgs]
    handler: Handler

    def openai_schema(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": _parameters_schema(self.args_model),
            },
        }


def _parameters_schema(model: Type[BaseModel]) -> Dict[str, Any]:
    """JSON schema of an args model with camelCase names and without pydantic titles."""
    schema = model.model_json_schema(by_alias=True)
    properties = {}
    for name, prop in schema.get("properties", {}).items():
        prop = {k: v for k, v in prop.items() if k != "title"}
        # Optional[int] renders as anyOf [int, null]; models handle a plain type better.
        if "anyOf" in prop:
            non_null = [p for p in prop.pop("anyOf") if p.get("type") != "null"]
            if non_null:
                prop.update(non_null[0])
            prop.pop("default", None)
        properties[name] = prop
    parameters: Dict[str, Any] = {"type": "object", "properties": properties}
    required = schema.get("required")
    if required:
        parameters["required"] = required
    return parameters


def _validation_message(tool_name: str, exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "arguments"
        problems.append(f"{location}: {err.get('msg')}")
    return f"Invalid arguments for {tool_name}: " + "; ".join(problems)


class ToolContract:
    """
    Session-scoped tool set bound to one executor and inspector.

    dispatch() validates arguments at the boundary and always returns a
    ToolInvocationRecord; unknown tools, malformed JSON and schema violations
    come back as `{error}` results for the model to read.
    """

    def __init__(
        self,
        executor: ActionExecutor,
        inspector: PageInspector,
        logger: Optional[logging.Logger] = None,
    ):
        self.executor = executor
        self.inspector = inspector
        self.logger = logger or logging.getLogger("tool_contract")
        self.specs: Dict[ToolName, ToolSpec] = {spec.name: spec for spec in self._build_specs()}

    def _build_specs(self) -> List[ToolSpec]:
        return [
            ToolSpec(
                ToolName.SNAPSHOT,
                "Get a structured list of the interactive elements on the current page, each with a ref "
                "(e1, e2, ...). Call this FIRST on every new page and again after the page changes. "
                "Refs from earlier snapshots stop working.",
                SnapshotArgs,
                self._snapshot,
            ),
            ToolSpec(
                ToolName.NAVIGATE,
                "Navigate the browser to a URL. For web searches, navigate directly to a search results URL. "
                "Element refs are invalidated after navigation.",
                NavigateArgs,
                self._navigate,
            ),
            ToolSpec(
                ToolName.CLICK,
                "Click an element by its ref from the latest snapshot(). Never invent refs.",
                ClickArgs,
                self._click,
            ),
            ToolSpec(
                ToolName.FILL,
                "Clear an input or textarea (by ref from the latest snapshot()) and type text into it. "
                "Set pressEnter to submit. Never use this for passwords or credentials.",
                FillArgs,
                self._fill,
            ),
            ToolSpec(
                ToolName.GET_PAGE_TEXT,
                "Read the visible text content and main links of the current page. Cheaper than snapshot() "
                "when you only need to read, e.g. search results or articles.",
                GetPageTextArgs,
                self._get_page_text,
            ),
            ToolSpec(
                ToolName.SCROLL,
                "Scroll the page up or down to reveal more content.",
                ScrollArgs,
                self._scroll,
            ),
            ToolSpec(
                ToolName.EXECUTE_JS,
                "Run JavaScript in the page and return the result as a string. Prefer click() and fill() "
                "when you have a ref.",
                ExecuteJSArgs,
                self._execute_js,
            ),
            ToolSpec(
                ToolName.WAIT_FOR,
                "Wait for the page to load or update (max 8000 ms).",
                WaitForArgs,
                self._wait_for,
            ),
            ToolSpec(
                ToolName.DONE,
                "Finish the task. You MUST call this when the task is complete, with a clear summary of "
                "what was accomplished and any information found.",
                DoneArgs,
                self._done,
            ),
        ]

    def openai_tools(self) -> List[Dict[str, Any]]:
        """Render the `tools` list for an OpenAI chat-completions request."""
        return [spec.openai_schema() for spec in self.specs.values()]

    @property
    def names(self) -> List[str]:
        return [name.value for name in self.specs]

    # ─────────────────────────────────────────────────────────────────────────
    # Dispatch
    # ─────────────────────────────────────────────────────────────────────────

    def _parse_arguments(self, tool_name: str, raw_arguments: Any) -> Dict[str, Any]:
        if raw_arguments is None or raw_arguments == "":
            return {}
        if isinstance(raw_arguments, dict):
            return raw_arguments
        try:
            parsed = json.loads(raw_arguments)
        except (TypeError, ValueError) as e:
            raise ToolValidationError(f"Malformed JSON arguments for {tool_name}: {e}", tool_name=tool_name) from e
        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ToolValidationError(f"Arguments for {tool_name} must be a JSON object", tool_name=tool_name)
        return parsed

    async def dispatch(self, name: str, raw_arguments: Any, step: int, call_id: str) -> ToolInvocationRecord:
        """Validate and run one tool call; never raises."""
        arguments: Dict[str, Any] = {}
        try:
            tool_name = ToolName(name)
        except ValueError:
            result = {"error": f"Unknown tool: {name}. Available tools: {', '.join(self.names)}"}
            self.logger.warning(result["error"])
            return ToolInvocationRecord(step, call_id, name, arguments, result)

        spec = self.specs[tool_name]
        try:
            arguments = self._parse_arguments(name, raw_arguments)
            try:
                args = spec.args_model.model_validate(arguments)
            except ValidationError as e:
                raise ToolValidationError(_validation_message(name, e), tool_name=name) from e
            arguments = args.model_dump(by_alias=True, exclude_none=True)
            self.logger.debug(f"Tool {name}({arguments})")
            result = await spec.handler(args)
        except AgentError as e:
            self.logger.warning(f"Tool {name} rejected: {e.message}")
            result = {"error": e.message}
        except Exception as e:
            self.logger.error(f"Tool {name} failed: {e}")
            result = {"error": f"{name} failed: {e}"}

        return ToolInvocationRecord(step, call_id, name, arguments, result)

    # ─────────────────────────────────────────────────────────────────────────
    # Handlers
    # ─────────────────────────────────────────────────────────────────────────

    async def _snapshot(self, args: SnapshotArgs) -> Dict[str, Any]:
        return await self.inspector.snapshot()

    async def _navigate(self, args: NavigateArgs) -> Dict[str, Any]:
        return await self.executor.navigate(args.url)

    async def _click(self, args: ClickArgs) -> Dict[str, Any]:
        return await self.executor.click(args.ref, args.wait_ms)

    async def _fill(self, args: FillArgs) -> Dict[str, Any]:
        return await self.executor.fill(args.ref, args.text, args.press_enter)

    async def _get_page_text(self, args: GetPageTextArgs) -> Dict[str, Any]:
        return await self.inspector.get_page_text()

    async def _scroll(self, args: ScrollArgs) -> Dict[str, Any]:
        return await self.executor.scroll(args.direction, args.amount)

    async def _execute_js(self, args: ExecuteJSArgs) -> Dict[str, Any]:
        return await self.executor.execute_js(args.script)

    async def _wait_for(self, args: WaitForArgs) -> Dict[str, Any]:
        return await self.executor.wait_for(args.ms)

    async def _done(self, args: DoneArgs) -> Dict[str, Any]:
        return {"done": True, "summary": args.summary}
