"""Primitive browser actions addressed by element reference."""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Literal, Optional
from urllib.parse import quote_plus

from browser import BrowserSurface
from exceptions import AgentError, StaleReferenceError
from page_inspector import REF_ATTRIBUTE, PageInspector

RESULT_PREVIEW_CHARS = 2000

CLICK_SCRIPT = """({ attr, ref }) => {
    const el = document.querySelector('[' + attr + '="' + ref + '"]');
    if (!el) return null;
    el.scrollIntoView({ behavior: 'instant', block: 'center' });
    if (typeof el.focus === 'function') el.focus();
    const opts = { bubbles: true, cancelable: true, view: window };
    el.dispatchEvent(new MouseEvent('mousedown', opts));
    el.dispatchEvent(new MouseEvent('mouseup', opts));
    el.dispatchEvent(new MouseEvent('click', opts));
    return {
        success: true,
        tag: el.tagName.toLowerCase(),
        label: (el.textContent || '').trim().slice(0, 60),
        href: el.href || '',
    };
}"""

FOCUS_AND_CLEAR_SCRIPT = """({ attr, ref }) => {
    const el = document.querySelector('[' + attr + '="' + ref + '"]');
    if (!el) return null;
    if ((el.type || '').toLowerCase() === 'password') {
        return { error: 'Refusing to type into a password field. Authentication is not supported; call done() and describe the login requirement.' };
    }
    el.scrollIntoView({ behavior: 'instant', block: 'center' });
    el.focus();
    if (typeof el.select === 'function') el.select();
    if ('value' in el) {
        el.value = '';
    } else if (el.isContentEditable) {
        el.textContent = '';
    }
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    return { success: true, tag: el.tagName.toLowerCase(), cleared: true };
}"""

FIRE_INPUT_EVENTS_SCRIPT = """({ attr, ref }) => {
    const el = document.querySelector('[' + attr + '="' + ref + '"]');
    if (!el) return false;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    return true;
}"""

SCROLL_SCRIPT = """(delta) => { window.scrollBy({ top: delta, behavior: 'smooth' }); }"""

SCROLL_Y_SCRIPT = """() => window.scrollY || 0"""

_FUNCTION_SOURCE = re.compile(r"^(async\s+)?(function\b|\([^)]*\)\s*=>|[\w$]+\s*=>)")
_RETURN_STATEMENT = re.compile(r"(^|[;{}\n])\s*return\b")

URL_PREFIXES = ("https://", "http://", "file://", "about:", "data:")


def stringify_result(result: Any, limit: int = RESULT_PREVIEW_CHARS) -> str:
    """Render a script result the way the model sees it, bounded in size."""
    if result is None:
        return "null"
    if isinstance(result, (dict, list)):
        return json.dumps(result, default=str)[:limit]
    if isinstance(result, bool):
        return "true" if result else "false"
    return str(result)[:limit]


def as_evaluable(script: str) -> str:
    """Wrap a bare function body in an arrow function so `return` statements work."""
    source = script.strip()
    if _FUNCTION_SOURCE.match(source) or not _RETURN_STATEMENT.search(source):
        return source
    prefix = "async () =>" if re.search(r"\bawait\b", source) else "() =>"
    return f"{prefix} {{\n{source}\n}}"


def _describe(exc: Exception) -> str:
    if isinstance(exc, AgentError):
        return exc.message
    return str(exc) or type(exc).__name__


class ActionExecutor:
    """Performs actions against the browser surface and never raises past its methods."""

    def __init__(
        self,
        browser: BrowserSurface,
        inspector: PageInspector,
        search_url_template: str = "https://www.bing.com/search?q={query}",
        navigation_settle_ms: int = 1500,
        click_wait_ms: int = 800,
        submit_wait_ms: int = 1200,
        type_wait_ms: int = 300,
        scroll_settle_ms: int = 500,
        max_wait_ms: int = 8000,
        logger: Optional[logging.Logger] = None,
    ):
        self.browser = browser
        self.inspector = inspector
        self.search_url_template = search_url_template
        self.navigation_settle_ms = navigation_settle_ms
        self.click_wait_ms = click_wait_ms
        self.submit_wait_ms = submit_wait_ms
        self.type_wait_ms = type_wait_ms
        self.scroll_settle_ms = scroll_settle_ms
        self.max_wait_ms = max_wait_ms
        self.logger = logger or logging.getLogger("action_executor")

    @classmethod
    def from_config(cls, browser: BrowserSurface, inspector: PageInspector, config: Any, **kwargs: Any) -> "ActionExecutor":
        """Build an executor from an AgentConfig."""
        return cls(
            browser,
            inspector,
            search_url_template=config.search_url_template,
            navigation_settle_ms=config.navigation_settle_ms,
            click_wait_ms=config.click_wait_ms,
            submit_wait_ms=config.submit_wait_ms,
            type_wait_ms=config.type_wait_ms,
            scroll_settle_ms=config.scroll_settle_ms,
            max_wait_ms=config.max_wait_ms,
            **kwargs,
        )

    async def _sleep_ms(self, ms: int) -> None:
        if ms > 0:
            await asyncio.sleep(ms / 1000)

    def normalize_url(self, raw: str) -> str:
        """Return a URL, performing search fallback when the input isn't a full URL."""
        raw = raw.strip()
        lowered = raw.lower()
        if lowered.startswith(URL_PREFIXES):
            return raw
        if lowered.startswith(("localhost", "127.0.0.1")):
            return f"http://{raw}"
        if " " in raw or "." not in raw:
            return self.search_url_template.format(query=quote_plus(raw))
        return f"https://{raw}"

    def _require_live(self, ref: str) -> None:
        if not self.inspector.is_live(ref):
            raise StaleReferenceError(ref)

    # ─────────────────────────────────────────────────────────────────────────
    # Actions
    # ─────────────────────────────────────────────────────────────────────────

    async def navigate(self, url: str) -> dict[str, Any]:
        """Load a URL and report where the browser ended up."""
        target = self.normalize_url(url)
        self.inspector.invalidate()
        try:
            await self.browser.goto(target)
            await self._sleep_ms(self.navigation_settle_ms)
            return {
                "success": True,
                "title": await self.browser.get_title(),
                "url": self.browser.get_url(),
            }
        except Exception as e:
            self.logger.error(f"Navigation to {target} failed: {e}")
            return {"error": _describe(e), "url": self.browser.get_url()}

    async def click(self, ref: str, wait_ms: Optional[int] = None) -> dict[str, Any]:
        """Click the element labelled `ref` with a mousedown/mouseup/click sequence."""
        try:
            self._require_live(ref)
            result = await self.browser.evaluate(CLICK_SCRIPT, {"attr": REF_ATTRIBUTE, "ref": ref})
            if result is None:
                raise StaleReferenceError(ref)
            wait = self.click_wait_ms if wait_ms is None else wait_ms
            await self._sleep_ms(max(0, min(wait, self.max_wait_ms)))
            return result
        except Exception as e:
            self.logger.warning(f"click({ref}) failed: {_describe(e)}")
            return {"error": _describe(e)}

    async def fill(self, ref: str, text: str, press_enter: bool = False) -> dict[str, Any]:
        """Replace the value of an input with `text`, optionally submitting with Enter."""
        try:
            self._require_live(ref)
            args = {"attr": REF_ATTRIBUTE, "ref": ref}
            focus = await self.browser.evaluate(FOCUS_AND_CLEAR_SCRIPT, args)
            if focus is None:
                raise StaleReferenceError(ref)
            if focus.get("error"):
                return focus

            await self.browser.insert_text(text)
            await self._sleep_ms(min(200, self.type_wait_ms))
            await self.browser.evaluate(FIRE_INPUT_EVENTS_SCRIPT, args)

            if press_enter:
                await self._sleep_ms(min(100, self.type_wait_ms))
                await self.browser.press_key("Enter")
                await self._sleep_ms(self.submit_wait_ms)
            else:
                await self._sleep_ms(self.type_wait_ms)
            return {"success": True, "typed": text, "pressedEnter": bool(press_enter)}
        except Exception as e:
            self.logger.warning(f"fill({ref}) failed: {_describe(e)}")
            return {"error": _describe(e)}

    async def scroll(self, direction: Literal["up", "down"], amount: int = 400) -> dict[str, Any]:
        """Smooth-scroll the page and return the resulting offset."""
        delta = amount if direction == "down" else -amount
        try:
            await self.browser.evaluate(SCROLL_SCRIPT, delta)
            await self._sleep_ms(self.scroll_settle_ms)
            scroll_y = await self.browser.evaluate(SCROLL_Y_SCRIPT)
            return {"success": True, "scrollY": scroll_y, "direction": direction, "amount": amount}
        except Exception as e:
            return {"error": _describe(e)}

    async def execute_js(self, script: str) -> dict[str, Any]:
        """Run arbitrary script in the page; the result is stringified and truncated."""
        try:
            result = await self.browser.evaluate(as_evaluable(script))
            return {"success": True, "result": stringify_result(result)}
        except Exception as e:
            return {"error": _describe(e)}

    async def wait_for(self, ms: int) -> dict[str, Any]:
        """Sleep for `ms`, clamped to the configured maximum."""
        duration = max(0, min(int(ms), self.max_wait_ms))
        await self._sleep_ms(duration)
        return {"waited": duration, "url": self.browser.get_url()}
