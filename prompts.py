"""System prompts and step messages for the browser agent"""
from typing import Any, Optional

from session_types import InteractionMode

PAGE_TEXT_PREVIEW_CHARS = 4000
ERROR_PREVIEW_CHARS = 300

BASE_PROMPT = """You are an autonomous browser agent operating a real web browser through tools.

You interact with pages through element references, not pixel coordinates:
- snapshot() lists the interactive elements of the page, each with a ref such as "e3"
- click(ref) and fill(ref, text) act on those refs
- navigate(url) loads a page; getPageText() reads the page content
- scroll(), waitFor() and executeJS() help with lazy or dynamic pages
- done(summary) ends the task

## How to operate
1. When you arrive at a new page, call snapshot() FIRST to discover the interactive elements.
2. Use refs exactly as snapshot() returned them. Never guess or invent refs.
3. Refs expire after navigation or a new snapshot. If a ref is rejected, call snapshot() again.
4. Use getPageText() to read content such as search results or articles; it is cheaper than snapshot().
5. To search the web, navigate directly to a search results URL such as {search_example} instead of typing into a search box.
6. Call done() with a clear, factual summary as soon as the task is complete.

## Rules
- ALWAYS call snapshot() first on any new page before clicking or filling.
- Prefer click() over executeJS() when you have a ref.
- If something fails, re-snapshot and try a different element or approach.
- Never enter credentials. If you see a login form, call done() and describe what you found.
- Be efficient: you have at most {max_steps} steps.
- Always call done() when finished, even if the task could only be partially completed."""

VISION_ADDENDUM = """
## Screenshots
Each step includes a screenshot of the current viewport. Use it to orient yourself and to check the result of your actions, but still act through refs from snapshot()."""

TEXT_ONLY_ADDENDUM = """
## Page state
You cannot see the page. Each step includes the page title, URL, a text excerpt, the main links and the visible form controls. Call snapshot() to get refs before interacting."""


def get_system_prompt(
    mode: InteractionMode,
    max_steps: int = 8,
    search_url_template: str = "https://www.bing.com/search?q={query}",
    override: Optional[str] = None,
) -> str:
    """Generate the system prompt for the given interaction mode."""
    if override:
        return override

    prompt = BASE_PROMPT.format(
        search_example=search_url_template.replace("{query}", "your+query"),
        max_steps=max_steps,
    )
    if mode is InteractionMode.VISION:
        prompt += "\n" + VISION_ADDENDUM
    elif mode is InteractionMode.TEXT_ONLY:
        prompt += "\n" + TEXT_ONLY_ADDENDUM
    return prompt


def build_initial_message(task: str, url: str) -> str:
    return (
        f"TASK: {task}\n\n"
        f"The browser is now open. URL: {url}\n\n"
        "Call snapshot() to see the interactive elements on the page, then take action."
    )


def build_step_context(step: int, max_steps: int, title: str, url: str, with_screenshot: bool = False) -> str:
    """Per-step note telling the model where the browser is."""
    text = f'[Step {step}/{max_steps}] Current page: "{title}" at {url}.'
    if with_screenshot:
        text += " A screenshot of the viewport is attached."
    return text


def _format_forms(forms: list[dict[str, Any]]) -> str:
    lines = []
    for form in forms:
        kind = form.get("tag", "")
        if form.get("type"):
            kind += f"[{form['type']}]"
        label = form.get("label") or "(no label)"
        lines.append(f"- {kind}: {label}")
    return "\n".join(lines)


def build_text_only_context(
    step: int,
    max_steps: int,
    page_text: dict[str, Any],
    forms: Optional[list[dict[str, Any]]] = None,
) -> str:
    """
    Text representation of the page used in place of a screenshot.

    Carries title, url, a body text excerpt, the links and the form inventory.
    """
    title = page_text.get("title") or ""
    url = page_text.get("url") or ""
    parts = [f'[Step {step}/{max_steps}] Current page: "{title}" at {url}.']
    if page_text.get("error"):
        parts.append(f"Page text unavailable: {page_text['error']}")

    body = (page_text.get("bodyText") or "")[:PAGE_TEXT_PREVIEW_CHARS]
    if body:
        parts.append(f"Page text:\n{body}")
    links = page_text.get("links") or ""
    if links:
        parts.append(f"Links:\n{links}")
    if forms:
        parts.append(f"Form controls:\n{_format_forms(forms)}")
    return "\n\n".join(parts)


def build_step_complete_note(step: int, title: str, url: str) -> str:
    return (
        f'[Step {step} complete] Page is now: "{title}" at {url}. '
        "Continue with the task. Call snapshot() if you navigated to a new page."
    )


def build_error_note(step: int, message: str) -> str:
    return f"[Error on step {step}] {message}. Please try a different approach."


ABORT_HINTS = {
    "vision-unsupported": "The model rejected image input.",
    "rate-limited": "The provider is rate limiting requests.",
    "tool-call-unsupported": "The model doesn't support tool calling.",
    "transport": "The model endpoint could not be reached.",
}
DEFAULT_ABORT_HINT = "This usually means the model doesn't support tool calling or is overloaded."


def build_abort_summary(
    failures: int,
    status_code: Optional[int],
    error_text: str,
    cause: Optional[str] = None,
) -> str:
    status = status_code if status_code is not None else "unknown"
    hint = ABORT_HINTS.get(cause or "", DEFAULT_ABORT_HINT)
    return (
        f"Browser agent aborted after {failures} consecutive failures (HTTP {status}).\n"
        f"{hint}\n"
        "Try a different model in the model routing settings.\n\n"
        f"Error: {error_text[:ERROR_PREVIEW_CHARS]}"
    )


def build_step_limit_summary(max_outer_steps: int) -> str:
    return (
        f"Browser agent reached the step limit ({max_outer_steps} outer iterations). "
        "Task may be partially completed."
    )


CANCELLED_SUMMARY = "Browser agent was cancelled before the task completed."
