"""Controllable browser surface for the agent, backed by Playwright."""
from __future__ import annotations

import logging
from typing import Any, Literal, Optional, Protocol, runtime_checkable

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
    TimeoutError as PlaywrightTimeout,
)

from exceptions import (
    BrowserError,
    BrowserNotStartedError,
    NavigationError,
    ScreenshotError,
    ScriptExecutionError,
)

BrowserType = Literal["chromium", "firefox", "webkit"]

# Silences media elements created after the call, including ones added on later navigations.
MUTE_MEDIA_SCRIPT = """() => {
    const mute = (el) => { try { el.muted = true; el.volume = 0; } catch (e) {} };
    document.querySelectorAll('audio, video').forEach(mute);
    document.addEventListener('play', (ev) => mute(ev.target), true);
}"""


@runtime_checkable
class BrowserSurface(Protocol):
    """The browser primitives the agent depends on."""

    async def start(self) -> None: ...

    async def close(self) -> None: ...

    def is_closed(self) -> bool: ...

    async def goto(self, url: str) -> None: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def screenshot(self) -> bytes: ...

    async def insert_text(self, text: str) -> None: ...

    async def press_key(self, key: str) -> None: ...

    def get_url(self) -> str: ...

    async def get_title(self) -> str: ...

    async def set_audio_muted(self, muted: bool) -> None: ...


class SimpleBrowser:
    """Single-page Playwright browser owned by one agent session."""

    def __init__(
        self,
        browser_type: BrowserType = "chromium",
        headless: bool = False,
        viewport_width: int = 1280,
        viewport_height: int = 900,
        mute_audio: bool = True,
        slow_mo: int = 0,
        logger: Optional[logging.Logger] = None,
    ):
        self.browser_type = browser_type
        self.headless = headless
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.mute_audio = mute_audio
        self.slow_mo = slow_mo
        self.logger = logger or logging.getLogger("browser")

        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._closed = False
        self._released = False
        self._muted = False

    def _ensure_started(self) -> None:
        """Raise if browser not started or already torn down."""
        if self.page is None or self._closed:
            raise BrowserNotStartedError()

    async def start(self) -> None:
        """Start the browser with specified engine."""
        self._released = False
        self._playwright = await async_playwright().start()

        browser_launcher = getattr(self._playwright, self.browser_type)
        launch_options: dict[str, Any] = {"headless": self.headless}
        if self.slow_mo > 0:
            launch_options["slow_mo"] = self.slow_mo
        if self.mute_audio:
            if self.browser_type == "chromium":
                launch_options["args"] = ["--mute-audio"]
            elif self.browser_type == "firefox":
                launch_options["firefox_user_prefs"] = {"media.volume_scale": "0.0"}

        self.browser = await browser_launcher.launch(**launch_options)
        self.context = await self.browser.new_context(
            viewport={"width": self.viewport_width, "height": self.viewport_height}
        )
        self.page = await self.context.new_page()
        self.page.on("close", self._handle_page_closed)
        self._closed = False

        if self.mute_audio:
            await self.set_audio_muted(True)

        self.logger.info(f"Browser started: {self.browser_type} (headless={self.headless})")

    def _handle_page_closed(self, _page: Any) -> None:
        """Track a window closed by the user or the engine."""
        if not self._closed:
            self.logger.info("Browser page was closed externally")
        self._closed = True

    def is_closed(self) -> bool:
        """True once the page is gone, whether closed by us or externally."""
        return self._closed or self.page is None

    @property
    def released(self) -> bool:
        """True once close() has torn down the context, browser and driver."""
        return self._released

    async def close(self) -> None:
        """Tear down page, context, browser and driver; each step runs even if an earlier one fails."""
        if self._released:
            return
        self._released = True
        self._closed = True

        steps = []
        if self.page is not None and not self.page.is_closed():
            steps.append(("page", self.page.close))
        if self.context is not None:
            steps.append(("context", self.context.close))
        if self.browser is not None:
            steps.append(("browser", self.browser.close))
        if self._playwright is not None:
            steps.append(("playwright", self._playwright.stop))

        for name, teardown in steps:
            try:
                await teardown()
            except Exception as e:
                self.logger.warning(f"Failed to close {name}: {e}")

        self.page = None
        self.context = None
        self.browser = None
        self._playwright = None
        self.logger.info("Browser closed")

    async def set_audio_muted(self, muted: bool) -> None:
        """Mute page media; engine-level muting is applied at launch."""
        self._ensure_started()
        if muted and not self._muted:
            await self.context.add_init_script(MUTE_MEDIA_SCRIPT)
            try:
                await self.page.evaluate(MUTE_MEDIA_SCRIPT)
            except Exception as e:
                self.logger.warning(f"Failed to mute current page: {e}")
        self._muted = muted

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    async def goto(
        self,
        url: str,
        wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = "load",
        timeout: float = 30000,
    ) -> None:
        """Navigate to a URL with configurable wait strategy."""
        self._ensure_started()
        try:
            await self.page.goto(url, wait_until=wait_until, timeout=timeout)
        except PlaywrightTimeout as e:
            raise NavigationError(f"Navigation timed out: {url}", url=url, timeout=timeout) from e
        except Exception as e:
            raise NavigationError(f"Navigation failed: {e}", url=url) from e

    def get_url(self) -> str:
        """Get current URL, empty once the page is gone."""
        if self.is_closed():
            return ""
        return self.page.url

    async def get_title(self) -> str:
        """Get current page title."""
        if self.is_closed():
            return ""
        try:
            return await self.page.title()
        except Exception:
            return ""

    # ─────────────────────────────────────────────────────────────────────────
    # Scripting and input
    # ─────────────────────────────────────────────────────────────────────────

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Evaluate a script in the page and return its serialized value."""
        self._ensure_started()
        try:
            if arg is None:
                return await self.page.evaluate(script)
            return await self.page.evaluate(script, arg)
        except BrowserError:
            raise
        except Exception as e:
            raise ScriptExecutionError(f"Script failed: {e}", url=self.page.url) from e

    async def insert_text(self, text: str) -> None:
        """Insert text into the focused element as trusted input."""
        self._ensure_started()
        await self.page.keyboard.insert_text(text)

    async def press_key(self, key: str) -> None:
        """Press a keyboard key."""
        self._ensure_started()
        await self.page.keyboard.press(key)

    # ─────────────────────────────────────────────────────────────────────────
    # Screenshots
    # ─────────────────────────────────────────────────────────────────────────

    async def screenshot(self, full_page: bool = False) -> bytes:
        """Capture the current viewport as PNG bytes."""
        self._ensure_started()
        try:
            return await self.page.screenshot(full_page=full_page)
        except Exception as e:
            raise ScreenshotError(f"Screenshot failed: {e}") from e
