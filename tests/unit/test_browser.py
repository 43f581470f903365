"""Unit tests for the Playwright browser surface lifecycle."""
from __future__ import annotations

import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

import browser as browser_module
from agent import BrowserAgent
from browser import SimpleBrowser
from conftest import ScriptedEndpoint
from session_types import TerminationState


def started_browser() -> SimpleBrowser:
    """SimpleBrowser wired to mocked Playwright objects, as after start()."""
    browser = SimpleBrowser(headless=True)
    browser.page = MagicMock()
    browser.page.is_closed = MagicMock(return_value=False)
    browser.page.close = AsyncMock()
    browser.page.url = "https://example.com/"
    browser.context = MagicMock()
    browser.context.close = AsyncMock()
    browser.browser = MagicMock()
    browser.browser.close = AsyncMock()
    browser._playwright = MagicMock()
    browser._playwright.stop = AsyncMock()
    return browser


def handles(browser: SimpleBrowser):
    return browser.page, browser.context, browser.browser, browser._playwright


class TestClose:
    """Tests for SimpleBrowser.close()."""

    @pytest.mark.asyncio
    async def test_tears_everything_down(self):
        browser = started_browser()
        page, context, engine, playwright = handles(browser)

        await browser.close()

        page.close.assert_awaited_once()
        context.close.assert_awaited_once()
        engine.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert browser.is_closed()
        assert browser.released

    @pytest.mark.asyncio
    async def test_failed_step_does_not_skip_the_rest(self, caplog):
        browser = started_browser()
        page, context, engine, playwright = handles(browser)
        page.close.side_effect = RuntimeError("target crashed")
        context.close.side_effect = RuntimeError("context gone")

        with caplog.at_level(logging.WARNING, logger="browser"):
            await browser.close()

        engine.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert "Failed to close page: target crashed" in caplog.text
        assert "Failed to close context: context gone" in caplog.text

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        browser = started_browser()
        _, _, engine, playwright = handles(browser)

        await browser.close()
        await browser.close()

        engine.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()


class TestExternalClose:
    """A page closed by the user still leaves the engine to release."""

    @pytest.mark.asyncio
    async def test_agent_releases_engine_after_page_closed(self, settings):
        browser = started_browser()
        page, context, engine, playwright = handles(browser)

        browser._handle_page_closed(page)
        page.is_closed.return_value = True
        assert browser.is_closed()
        assert browser.get_url() == ""
        assert not browser.released

        agent = BrowserAgent(settings, ScriptedEndpoint([]), browser=browser)
        await agent._release_browser()

        page.close.assert_not_awaited()
        context.close.assert_awaited_once()
        engine.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert browser.released

    @pytest.mark.asyncio
    async def test_failed_start_is_torn_down(self, settings, monkeypatch):
        engine = MagicMock()
        engine.new_context = AsyncMock(side_effect=RuntimeError("context refused"))
        engine.close = AsyncMock()
        playwright = MagicMock()
        playwright.chromium.launch = AsyncMock(return_value=engine)
        playwright.stop = AsyncMock()
        monkeypatch.setattr(
            browser_module,
            "async_playwright",
            lambda: SimpleNamespace(start=AsyncMock(return_value=playwright)),
        )
        browser = SimpleBrowser(headless=True)

        result = await BrowserAgent(settings, ScriptedEndpoint([]), browser=browser).run("anything")

        assert result.state is TerminationState.ABORTED
        assert "context refused" in result.summary
        engine.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
