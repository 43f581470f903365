"""DOM snapshots with element references, and text extraction for reading pages."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from browser import BrowserSurface
from exceptions import BrowserError
from session_types import ElementReference

REF_ATTRIBUTE = "data-agent-ref"

INTERACTIVE_SELECTORS = [
    "a[href]",
    "button",
    "input",
    "textarea",
    "select",
    '[role="button"]',
    '[role="link"]',
    '[role="textbox"]',
    '[role="checkbox"]',
    '[role="option"]',
    '[role="menuitem"]',
    "[onclick]",
    '[tabindex]:not([tabindex="-1"])',
]

# Labels the visible interactive elements; numbering continues from `start` so
# references never repeat within a session.
SNAPSHOT_SCRIPT = """({ selectors, attr, start }) => {
    for (const stale of document.querySelectorAll('[' + attr + ']')) {
        stale.removeAttribute(attr);
    }
    const seen = new Set();
    const elements = [];
    let id = start;

    for (const el of document.querySelectorAll(selectors)) {
        if (seen.has(el)) continue;
        seen.add(el);

        const rect = el.getBoundingClientRect();
        if (rect.width === 0 || rect.height === 0) continue;
        const style = getComputedStyle(el);
        if (style.visibility === 'hidden') continue;
        if (style.display === 'none') continue;

        const ref = 'e' + id++;
        el.setAttribute(attr, ref);

        const tag = el.tagName.toLowerCase();
        const type = el.type || '';
        const label = (
            el.getAttribute('aria-label') ||
            el.getAttribute('placeholder') ||
            el.getAttribute('title') ||
            el.getAttribute('name') ||
            (el.textContent || '').trim().slice(0, 80) ||
            (el.value || '').slice(0, 40) ||
            ''
        ).replace(/\\s+/g, ' ').trim();

        const entry = { ref, tag, label };
        if (type) entry.type = type;
        if (el.href) entry.href = String(el.href).slice(0, 120);
        if (el.disabled) entry.disabled = true;
        if (tag === 'input' || tag === 'textarea') entry.value = el.value || '';
        elements.push(entry);
    }

    return {
        url: location.href,
        title: document.title,
        count: elements.length,
        elements,
    };
}"""

PAGE_TEXT_SCRIPT = """() => {
    const title = document.title;
    const url = location.href;
    const clone = document.body ? document.body.cloneNode(true) : null;
    let bodyText = '';
    if (clone) {
        for (const el of clone.querySelectorAll('script, style, noscript, nav, footer')) {
            el.remove();
        }
        bodyText = (clone.innerText || clone.textContent || '').replace(/\\s+/g, ' ').trim().slice(0, 8000);
    }
    const links = Array.from(document.querySelectorAll('a[href]'))
        .slice(0, 40)
        .map(a => (a.textContent || '').trim().slice(0, 60) + ' → ' + a.href)
        .filter(s => s.trim())
        .join('\\n');
    return { title, url, bodyText, links };
}"""

FORM_INVENTORY_SCRIPT = """() => {
    const out = [];
    for (const el of document.querySelectorAll('input, textarea, select, button')) {
        const rect = el.getBoundingClientRect();
        if (rect.width === 0 || rect.height === 0) continue;
        if (el.type === 'hidden') continue;
        const label = (
            el.getAttribute('aria-label') ||
            el.getAttribute('placeholder') ||
            el.getAttribute('name') ||
            (el.textContent || '').trim().slice(0, 40) ||
            ''
        ).replace(/\\s+/g, ' ').trim();
        out.push({ tag: el.tagName.toLowerCase(), type: el.type || '', label });
        if (out.length >= 30) break;
    }
    return out;
}"""


class PageInspector:
    """Reads the live page for the model; owns the current reference epoch."""

    def __init__(
        self,
        browser: BrowserSurface,
        snapshot_settle_ms: int = 600,
        page_text_settle_ms: int = 400,
        logger: Optional[logging.Logger] = None,
    ):
        self.browser = browser
        self.snapshot_settle_ms = snapshot_settle_ms
        self.page_text_settle_ms = page_text_settle_ms
        self.logger = logger or logging.getLogger("page_inspector")
        self._next_ref = 1
        self._live_refs: set[str] = set()
        self.epoch = 0

    @property
    def live_refs(self) -> frozenset[str]:
        return frozenset(self._live_refs)

    def is_live(self, ref: str) -> bool:
        return ref in self._live_refs

    def invalidate(self) -> None:
        """Forget the current references, e.g. after a navigation."""
        if self._live_refs:
            self.logger.debug(f"Invalidating {len(self._live_refs)} refs from epoch {self.epoch}")
        self._live_refs.clear()

    async def _error_payload(self, exc: Exception) -> dict[str, Any]:
        return {
            "error": getattr(exc, "message", None) or str(exc),
            "url": self.browser.get_url(),
            "title": await self.browser.get_title(),
        }

    async def snapshot(self) -> dict[str, Any]:
        """Label interactive elements and return {url, title, count, elements}."""
        if self.snapshot_settle_ms:
            await asyncio.sleep(self.snapshot_settle_ms / 1000)
        try:
            snap = await self.browser.evaluate(
                SNAPSHOT_SCRIPT,
                {
                    "selectors": ", ".join(INTERACTIVE_SELECTORS),
                    "attr": REF_ATTRIBUTE,
                    "start": self._next_ref,
                },
            )
        except BrowserError as e:
            self.logger.warning(f"Snapshot failed: {e}")
            self.invalidate()
            return await self._error_payload(e)

        elements = snap.get("elements") or []
        self.epoch += 1
        self._live_refs = {str(el.get("ref")) for el in elements}
        self._next_ref += len(elements)
        self.logger.info(f"Snapshot {self.epoch}: {len(elements)} elements on {snap.get('url')}")
        return snap

    async def element_references(self) -> list[ElementReference]:
        """Typed view over snapshot(); empty when the snapshot failed."""
        snap = await self.snapshot()
        return [ElementReference.from_snapshot_entry(el) for el in snap.get("elements") or []]

    async def get_page_text(self) -> dict[str, Any]:
        """Return {title, url, bodyText, links} for reading the page."""
        if self.page_text_settle_ms:
            await asyncio.sleep(self.page_text_settle_ms / 1000)
        try:
            return await self.browser.evaluate(PAGE_TEXT_SCRIPT)
        except BrowserError as e:
            self.logger.warning(f"Page text extraction failed: {e}")
            return await self._error_payload(e)

    async def form_inventory(self) -> list[dict[str, Any]]:
        """Visible form controls, for the text-only page representation."""
        try:
            return await self.browser.evaluate(FORM_INVENTORY_SCRIPT) or []
        except BrowserError as e:
            self.logger.warning(f"Form inventory failed: {e}")
            return []
