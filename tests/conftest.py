"""Pytest fixtures for browser agent tests."""
from __future__ import annotations

import io
import json
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image

from action_executor import (
    CLICK_SCRIPT,
    FIRE_INPUT_EVENTS_SCRIPT,
    FOCUS_AND_CLEAR_SCRIPT,
    SCROLL_SCRIPT,
    SCROLL_Y_SCRIPT,
)
from browser import MUTE_MEDIA_SCRIPT
from config import AgentSettings
from exceptions import NavigationError
from model_router import ModelReply, ToolCallRequest
from page_inspector import FORM_INVENTORY_SCRIPT, PAGE_TEXT_SCRIPT, SNAPSHOT_SCRIPT
from session_types import (
    InteractionMode,
    SessionResult,
    TerminationState,
    ToolInvocationRecord,
)

NO_DELAYS = {
    "navigation_settle_ms": 0,
    "snapshot_settle_ms": 0,
    "page_text_settle_ms": 0,
    "click_wait_ms": 0,
    "submit_wait_ms": 0,
    "type_wait_ms": 0,
    "scroll_settle_ms": 0,
}

SEARCH_PAGE = "https://www.bing.com/search?q=aura+os"


def _png(width: int = 1280, height: int = 900) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), (255, 255, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeBrowser:
    """In-memory page model that answers the agent's page scripts."""

    def __init__(self, pages: Optional[Dict[str, Dict[str, Any]]] = None):
        self.pages = pages or {}
        self.url = "about:blank"
        self.closed = True
        self.muted = False
        self.current_refs: Dict[str, Dict[str, Any]] = {}
        self.visited: List[str] = []
        self.typed: List[str] = []
        self.keys: List[str] = []
        self.scripts: List[str] = []
        self.clicked: List[str] = []
        self.js_results: Dict[str, Any] = {}
        self.failing_urls: set[str] = set()
        self.scroll_y = 0
        self.close_calls = 0
        self.screenshot_bytes = _png()

    def _page(self) -> Dict[str, Any]:
        return self.pages.get(self.url, {"title": "", "elements": [], "bodyText": "", "links": ""})

    def _load(self, url: str) -> None:
        self.url = url
        self.visited.append(url)
        self.current_refs = {}

    async def start(self) -> None:
        self.closed = False

    async def close(self) -> None:
        self.closed = True
        self.close_calls += 1

    def is_closed(self) -> bool:
        return self.closed

    async def goto(self, url: str) -> None:
        if url in self.failing_urls:
            raise NavigationError(f"Navigation failed: {url}", url=url)
        self._load(url)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.scripts.append(script)
        page = self._page()

        if script == SNAPSHOT_SCRIPT:
            self.current_refs = {}
            elements = []
            for offset, el in enumerate(page["elements"]):
                ref = f"e{arg['start'] + offset}"
                self.current_refs[ref] = el
                entry = {"ref": ref, "tag": el["tag"], "label": el.get("label", "")}
                for key in ("type", "href", "disabled", "value"):
                    if key in el:
                        entry[key] = el[key]
                elements.append(entry)
            return {"url": self.url, "title": page["title"], "count": len(elements), "elements": elements}

        if script == PAGE_TEXT_SCRIPT:
            return {
                "title": page["title"],
                "url": self.url,
                "bodyText": page.get("bodyText", ""),
                "links": page.get("links", ""),
            }

        if script == FORM_INVENTORY_SCRIPT:
            return [
                {"tag": el["tag"], "type": el.get("type", ""), "label": el.get("label", "")}
                for el in page["elements"]
                if el["tag"] in ("input", "textarea", "select", "button")
            ]

        if script == CLICK_SCRIPT:
            el = self.current_refs.get(arg["ref"])
            if el is None:
                return None
            self.clicked.append(arg["ref"])
            if el.get("navigates_to"):
                self._load(el["navigates_to"])
            return {"success": True, "tag": el["tag"], "label": el.get("label", ""), "href": el.get("href", "")}

        if script == FOCUS_AND_CLEAR_SCRIPT:
            el = self.current_refs.get(arg["ref"])
            if el is None:
                return None
            if el.get("type") == "password":
                return {"error": "Refusing to type into a password field."}
            self.focused = el
            return {"success": True, "tag": el["tag"], "cleared": True}

        if script == FIRE_INPUT_EVENTS_SCRIPT:
            return arg["ref"] in self.current_refs

        if script == SCROLL_SCRIPT:
            self.scroll_y = max(0, self.scroll_y + arg)
            return None

        if script == SCROLL_Y_SCRIPT:
            return self.scroll_y

        if script == MUTE_MEDIA_SCRIPT:
            return None

        return self.js_results.get(script)

    async def screenshot(self) -> bytes:
        return self.screenshot_bytes

    async def insert_text(self, text: str) -> None:
        self.typed.append(text)

    async def press_key(self, key: str) -> None:
        self.keys.append(key)
        submit_to = getattr(self, "focused", {}).get("submits_to")
        if key == "Enter" and submit_to:
            self._load(submit_to)

    def get_url(self) -> str:
        return "" if self.closed else self.url

    async def get_title(self) -> str:
        return "" if self.closed else self._page()["title"]

    async def set_audio_muted(self, muted: bool) -> None:
        self.muted = muted


class ScriptedEndpoint:
    """Chat endpoint that replays canned replies or raises canned errors."""

    def __init__(
        self,
        replies: List[Union[ModelReply, Exception]],
        model_id: str = "fake-model",
        supports_vision: Optional[bool] = None,
    ):
        self.replies = list(replies)
        self.model_id = model_id
        self.provider = "fake"
        self.supports_vision = supports_vision
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, messages, tools=None) -> ModelReply:
        self.calls.append({"messages": messages, "tools": tools})
        if not self.replies:
            return ModelReply(content="")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class RecordingSender:
    """Collects every event sent by the agent."""

    def __init__(self):
        self.events: List[tuple[str, Dict[str, Any]]] = []

    def send(self, event_name: str, payload: Dict[str, Any]) -> None:
        self.events.append((event_name, payload))

    def messages(self, phase: Optional[str] = None) -> List[str]:
        return [
            p["message"]
            for name, p in self.events
            if name == "browser-agent:status" and (phase is None or p["phase"] == phase)
        ]

    def done_payloads(self) -> List[Dict[str, Any]]:
        return [p for name, p in self.events if name == "browser-agent:done"]


_call_counter = 0


def tool_call(name: str, content: str = "", **arguments: Any) -> ModelReply:
    """ModelReply carrying a single tool call."""
    global _call_counter
    _call_counter += 1
    return ModelReply(
        content=content,
        tool_calls=[ToolCallRequest(id=f"call_{_call_counter}", name=name, arguments=json.dumps(arguments))],
    )


def tool_calls(*calls: tuple[str, Dict[str, Any]]) -> ModelReply:
    """ModelReply carrying several tool calls in one round."""
    global _call_counter
    requests = []
    for name, arguments in calls:
        _call_counter += 1
        requests.append(ToolCallRequest(id=f"call_{_call_counter}", name=name, arguments=json.dumps(arguments)))
    return ModelReply(tool_calls=requests)


@pytest.fixture
def settings() -> AgentSettings:
    """Settings with every settle delay disabled."""
    return AgentSettings.model_validate({"agent": dict(NO_DELAYS)})


@pytest.fixture
def search_pages() -> Dict[str, Dict[str, Any]]:
    """A blank start page and a search results page."""
    return {
        "about:blank": {"title": "", "elements": [], "bodyText": "", "links": ""},
        SEARCH_PAGE: {
            "title": "aura os - Search",
            "elements": [
                {"tag": "input", "type": "search", "label": "Search", "value": "aura os"},
                {"tag": "a", "label": "Aura OS - The AI Desktop", "href": "https://auraos.example/"},
                {"tag": "a", "label": "Aura OS on GitHub", "href": "https://github.com/example/aura-os"},
            ],
            "bodyText": "Aura OS - The AI Desktop. A creative desktop environment. Aura OS on GitHub.",
            "links": "Aura OS - The AI Desktop → https://auraos.example/\nAura OS on GitHub → https://github.com/example/aura-os",
        },
    }


@pytest.fixture
def fake_browser(search_pages) -> FakeBrowser:
    return FakeBrowser(search_pages)


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def temp_dir() -> Path:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_browser() -> MagicMock:
    """Create a mock browser surface for testing."""
    browser = MagicMock()
    browser.start = AsyncMock()
    browser.close = AsyncMock()
    browser.goto = AsyncMock()
    browser.evaluate = AsyncMock(return_value=None)
    browser.screenshot = AsyncMock(return_value=_png(200, 100))
    browser.insert_text = AsyncMock()
    browser.press_key = AsyncMock()
    browser.set_audio_muted = AsyncMock()
    browser.is_closed = MagicMock(return_value=False)
    browser.get_url = MagicMock(return_value="https://example.com")
    browser.get_title = AsyncMock(return_value="Example Page")
    return browser


@pytest.fixture
def sample_session_result() -> SessionResult:
    """Create a finished session for reporter tests."""
    return SessionResult(
        task="search for 'aura os' and report the first result title",
        start_url="about:blank",
        state=TerminationState.DONE,
        summary="The first result is 'Aura OS - The AI Desktop'.",
        started_at=datetime(2024, 1, 1, 10, 0, 0),
        finished_at=datetime(2024, 1, 1, 10, 0, 30),
        steps=2,
        mode=InteractionMode.VISION,
        final_url=SEARCH_PAGE,
        records=[
            ToolInvocationRecord(
                step=1,
                call_id="call_a",
                tool_name="navigate",
                arguments={"url": SEARCH_PAGE},
                result={"success": True, "title": "aura os - Search", "url": SEARCH_PAGE},
                timestamp=datetime(2024, 1, 1, 10, 0, 5),
            ),
            ToolInvocationRecord(
                step=1,
                call_id="call_b",
                tool_name="click",
                arguments={"ref": "e99"},
                result={"error": "Element not found: e99. Call snapshot() again to get fresh refs."},
                timestamp=datetime(2024, 1, 1, 10, 0, 10),
            ),
            ToolInvocationRecord(
                step=2,
                call_id="call_c",
                tool_name="done",
                arguments={"summary": "The first result is 'Aura OS - The AI Desktop'."},
                result={"done": True, "summary": "The first result is 'Aura OS - The AI Desktop'."},
                timestamp=datetime(2024, 1, 1, 10, 0, 20),
            ),
        ],
    )
