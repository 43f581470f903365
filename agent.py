"""Browser automation agent: drives a browser through a tool-calling model."""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from action_executor import ActionExecutor
from browser import BrowserSurface, SimpleBrowser
from capability import CapabilityNegotiator, classify_error, extract_error_details, extract_status_code
from config.models import AgentSettings
from exceptions import AgentError, ConfigurationError
from messages import (
    Message,
    has_image,
    screenshot_to_data_url,
    system_message,
    tool_message,
    user_message,
    without_images,
)
from model_router import ChatEndpoint, ModelReply, resolve_model as default_resolve_model
from page_inspector import PageInspector
from prompts import (
    CANCELLED_SUMMARY,
    build_abort_summary,
    build_error_note,
    build_initial_message,
    build_step_complete_note,
    build_step_context,
    build_step_limit_summary,
    build_text_only_context,
    get_system_prompt,
)
from reporters.json_reporter import JSONReporter
from session_types import (
    InteractionMode,
    Phase,
    ProgressEvent,
    SessionResult,
    TaskSession,
    TerminationState,
)
from tools import ToolContract

STATUS_EVENT = "browser-agent:status"
DONE_EVENT = "browser-agent:done"

MODEL_ROLES = ("vision", "chat")
RESULT_PREVIEW_CHARS = 500
BROWSER_CLOSED_SUMMARY = "The browser window was closed before the task completed."


class ProgressSender(Protocol):
    """Channel for progress events; delivery is fire-and-forget."""

    def send(self, event_name: str, payload: Dict[str, Any]) -> Any: ...


class BrowserAgent:
    """Runs one task at a time against its own browser surface."""

    def __init__(
        self,
        settings: AgentSettings,
        endpoint: ChatEndpoint,
        browser: Optional[BrowserSurface] = None,
        sender: Optional[ProgressSender] = None,
        cancel_event: Optional[asyncio.Event] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.config = settings.agent
        self.endpoint = endpoint
        self.sender = sender
        self.cancel_event = cancel_event
        self.logger = logger or logging.getLogger("browser_agent")

        self.browser = browser or SimpleBrowser(
            browser_type=settings.browser.browser,
            headless=settings.browser.headless,
            viewport_width=settings.browser.viewport_width,
            viewport_height=settings.browser.viewport_height,
            mute_audio=settings.browser.mute_audio,
            slow_mo=settings.browser.slow_mo,
        )
        self.inspector = PageInspector(
            self.browser,
            snapshot_settle_ms=self.config.snapshot_settle_ms,
            page_text_settle_ms=self.config.page_text_settle_ms,
        )
        self.executor = ActionExecutor.from_config(self.browser, self.inspector, self.config)
        self.tools = ToolContract(self.executor, self.inspector)

        mode = InteractionMode(self.config.interaction_mode)
        if mode is InteractionMode.VISION and getattr(endpoint, "supports_vision", None) is False:
            mode = InteractionMode.TEXT_ONLY
        self.negotiator = CapabilityNegotiator(mode, logger=self.logger)
        self._events: Optional[asyncio.Queue] = None

    # ─────────────────────────────────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────────────────────────────────

    async def _send(self, event_name: str, payload: Dict[str, Any]) -> None:
        if self._events is None:
            await _deliver(self.sender, event_name, payload, self.logger)
            return
        self._events.put_nowait((event_name, payload))
        # hand control to the drainer once so a synchronous sender sees each event in step
        await asyncio.sleep(0)

    async def _drain_events(self, events: asyncio.Queue) -> None:
        """Deliver queued events in order; a slow sender only delays its own queue."""
        while True:
            item = await events.get()
            if item is None:
                return
            event_name, payload = item
            await _deliver(self.sender, event_name, payload, self.logger)

    async def _emit(self, step: int, phase: Phase, message: str, **payload: Any) -> None:
        event = ProgressEvent(step=step, phase=phase, message=message, payload=payload)
        self.logger.debug(f"[{phase.value}] {message}")
        await self._send(STATUS_EVENT, event.to_dict())

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    # ─────────────────────────────────────────────────────────────────────────
    # Run
    # ─────────────────────────────────────────────────────────────────────────

    async def run(self, task: str, start_url: Optional[str] = None) -> SessionResult:
        """Run the task to a terminal state; never raises for browser or model failures."""
        events: asyncio.Queue = asyncio.Queue()
        self._events = events
        drainer = asyncio.create_task(self._drain_events(events))
        try:
            return await self._run(task, start_url)
        finally:
            self._events = None
            events.put_nowait(None)
            await drainer

    async def _run(self, task: str, start_url: Optional[str]) -> SessionResult:
        session = TaskSession(task=task, start_url=start_url or "about:blank", mode=self.negotiator.mode)
        self.logger.info(f"Starting browser agent task: {task}")
        final_url = ""

        try:
            await self.browser.start()
            if self.settings.browser.mute_audio:
                await self.browser.set_audio_muted(True)
            outcome = await self.executor.navigate(session.start_url)
            if outcome.get("error"):
                self.logger.warning(f"Start URL failed to load: {outcome['error']}")

            await self._loop(session)
        except Exception as e:
            self.logger.error(f"Browser agent failed: {e}")
            message = e.message if isinstance(e, AgentError) else str(e)
            session.finish(TerminationState.ABORTED, f"Browser agent failed: {message}")
        finally:
            if not self.browser.is_closed():
                final_url = self.browser.get_url()
            await self._release_browser()
            session.prune_history()

        result = SessionResult(
            task=session.task,
            start_url=session.start_url,
            state=session.state,
            summary=session.summary,
            started_at=session.started_at,
            finished_at=datetime.utcnow(),
            steps=session.step,
            mode=self.negotiator.mode,
            final_url=final_url,
            records=list(session.records),
        )
        self.logger.info(f"Browser agent finished: {result.state.value} after {result.steps} step(s)")
        self._write_trace(result)
        await self._send(DONE_EVENT, result.to_dict())
        return result

    def _write_trace(self, result: SessionResult) -> Optional[Path]:
        """Persist the session trace; failures are logged, never raised."""
        if not self.settings.reporting.save_trace:
            return None
        try:
            path = JSONReporter().generate(result, self.settings.reporting.reports_folder)
            self.logger.info(f"Session trace written to {path}")
            return path
        except Exception as exc:
            self.logger.warning(f"Failed to write trace file: {exc}")
            return None

    async def _release_browser(self) -> None:
        """Always tear the browser down; a page closed externally still leaves the engine running."""
        try:
            await self.browser.close()
        except Exception as e:
            self.logger.warning(f"Failed to close browser: {e}")

    async def _loop(self, session: TaskSession) -> None:
        cfg = self.config
        session.history.append(
            user_message(build_initial_message(session.task, self.browser.get_url() or session.start_url))
        )

        while session.step < cfg.max_outer_steps and session.is_running:
            if self._cancelled():
                await self._emit(session.step, Phase.ABORT, "Cancelled.")
                session.finish(TerminationState.ABORTED, CANCELLED_SUMMARY)
                break
            if self.browser.is_closed():
                session.finish(TerminationState.ABORTED, BROWSER_CLOSED_SUMMARY)
                break

            session.step += 1
            step = session.step
            self.logger.info(f"Step {step}/{cfg.max_outer_steps}")

            try:
                summary = await self._run_step(session)
            except Exception as e:
                await self._handle_step_failure(session, e)
                continue

            session.consecutive_errors = 0
            if not session.is_running:
                break
            if summary is not None:
                session.finish(TerminationState.DONE, summary)
                await self._emit(step, Phase.DONE, summary)
                break

            title = await self.browser.get_title()
            session.history.append(user_message(build_step_complete_note(step, title, self.browser.get_url())))

        if session.is_running:
            session.finish(TerminationState.STEP_LIMIT_REACHED, build_step_limit_summary(cfg.max_outer_steps))

    # ─────────────────────────────────────────────────────────────────────────
    # One outer step
    # ─────────────────────────────────────────────────────────────────────────

    def _system_prompt(self) -> str:
        return get_system_prompt(
            self.negotiator.mode,
            max_steps=self.config.max_outer_steps,
            search_url_template=self.config.search_url_template,
            override=self.config.system_prompt,
        )

    async def _build_context(self, session: TaskSession) -> tuple[Message, Optional[str]]:
        """Page-state message for the current step, plus the screenshot data URL in vision mode."""
        step, max_steps = session.step, self.config.max_outer_steps
        if self.negotiator.mode is InteractionMode.TEXT_ONLY:
            page_text = await self.inspector.get_page_text()
            forms = await self.inspector.form_inventory()
            return user_message(build_text_only_context(step, max_steps, page_text, forms)), None

        title = await self.browser.get_title()
        url = self.browser.get_url()
        if self.negotiator.mode is InteractionMode.VISION:
            try:
                png = await self.browser.screenshot()
                image_url = screenshot_to_data_url(png, max_width=self.config.screenshot_max_width)
                text = build_step_context(step, max_steps, title, url, with_screenshot=True)
                return user_message(text, image_url), image_url
            except Exception as e:
                self.logger.warning(f"Screenshot unavailable for step {step}: {e}")
        return user_message(build_step_context(step, max_steps, title, url)), None

    def _commit(self, session: TaskSession, step_messages: List[Message]) -> None:
        """Append a step's messages to history; images never enter history."""
        session.history.extend(without_images(m) if has_image(m) else m for m in step_messages)

    async def _run_step(self, session: TaskSession) -> Optional[str]:
        """
        Run up to max_inner_steps tool-calling rounds.

        Returns the done() summary when the model finished the task, None
        otherwise. Model-call failures propagate after the step's progress is
        committed, except a first image rejection, which downgrades the mode
        and retries without consuming a round.
        """
        step = session.step
        context, image_url = await self._build_context(session)
        title = await self.browser.get_title()
        thinking_payload = {"screenshot": image_url} if image_url and self.config.emit_screenshots else {}
        await self._emit(
            step,
            Phase.THINKING,
            f"[Step {step}] Thinking... (page: {title or self.browser.get_url()})",
            **thinking_payload,
        )

        step_messages: List[Message] = [context]
        tools = self.tools.openai_tools()
        rounds = 0

        while rounds < self.config.max_inner_steps:
            if self._cancelled():
                self._commit(session, step_messages)
                await self._emit(step, Phase.ABORT, "Cancelled.")
                session.finish(TerminationState.ABORTED, CANCELLED_SUMMARY)
                return None

            rounds += 1
            request = [system_message(self._system_prompt())] + session.history + step_messages
            try:
                reply = await self.endpoint.complete(request, tools)
            except Exception as e:
                downgraded = False
                if has_image(step_messages[0]):
                    _, downgraded = self.negotiator.observe_failure(e)
                if not downgraded:
                    self._commit(session, step_messages)
                    raise
                rounds -= 1
                session.mode = self.negotiator.mode
                await self._emit(
                    step,
                    Phase.FALLBACK,
                    "Model does not accept images; continuing in text-only mode.",
                    mode=session.mode.value,
                )
                self._commit(session, step_messages[1:])
                context, _ = await self._build_context(session)
                step_messages = [context]
                continue

            summary = await self._handle_reply(session, reply, step_messages)
            if summary is not None or not reply.tool_calls:
                self._commit(session, step_messages)
                return summary

        self._commit(session, step_messages)
        return None

    async def _handle_reply(self, session: TaskSession, reply: ModelReply, step_messages: List[Message]) -> Optional[str]:
        """Execute one round of tool calls in order; returns a done() summary if any."""
        step = session.step
        text = (reply.content or "").strip()
        if text:
            await self._emit(step, Phase.THINKING, text)
        if text or reply.tool_calls:
            step_messages.append(reply.to_message())

        summary: Optional[str] = None
        for call in reply.tool_calls:
            shown_args = _display_arguments(call.arguments)
            args_str = json.dumps(shown_args) if shown_args else ""
            await self._emit(step, Phase.ACTING, f"Call: {call.name}({args_str})", toolName=call.name, args=shown_args)

            record = await self.tools.dispatch(call.name, call.arguments, step, call.id)
            session.records.append(record)
            step_messages.append(tool_message(call.id, record.result))

            preview = json.dumps(record.result, default=str)[:RESULT_PREVIEW_CHARS]
            await self._emit(step, Phase.ACTING, f"Result ({call.name}): {preview}", toolName=call.name)

            if record.is_done and summary is None:
                summary = str(record.result.get("summary", ""))
        return summary

    async def _handle_step_failure(self, session: TaskSession, exc: Exception) -> None:
        cfg = self.config
        step = session.step
        details = extract_error_details(exc)
        status_code = extract_status_code(exc)
        cause = classify_error(details, status_code)
        message = exc.message if isinstance(exc, AgentError) else (str(exc) or type(exc).__name__)

        # each transport attempt made inside the endpoint counts toward the ceiling
        attempts = max(1, getattr(exc, "attempts", 1))
        session.consecutive_errors = min(cfg.max_consecutive_errors, session.consecutive_errors + attempts)
        self.logger.error(f"Step {step} failed ({cause.value}): {details}")
        await self._emit(
            step,
            Phase.ERROR,
            f"Error (attempt {session.consecutive_errors}/{cfg.max_consecutive_errors}): {message}",
            cause=cause.value,
        )

        if session.consecutive_errors >= cfg.max_consecutive_errors:
            await self._emit(
                step,
                Phase.ABORT,
                f"Aborting after {session.consecutive_errors} consecutive errors.",
            )
            session.finish(
                TerminationState.ABORTED,
                build_abort_summary(session.consecutive_errors, status_code, details, cause.value),
            )
            return

        session.history.append(user_message(build_error_note(step, message)))


async def _deliver(
    sender: Optional[ProgressSender],
    event_name: str,
    payload: Dict[str, Any],
    logger: logging.Logger,
) -> None:
    """Send an event; sender failures are logged and never reach the loop."""
    if sender is None:
        return
    try:
        outcome = sender.send(event_name, payload)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as e:
        logger.warning(f"Progress sender failed for {event_name}: {e}")


def _display_arguments(raw: str) -> Any:
    try:
        parsed = json.loads(raw) if raw else {}
    except ValueError:
        return raw
    return parsed if parsed is not None else {}


def select_endpoint(
    resolve_model: Callable[[str, Any], ChatEndpoint],
    settings: AgentSettings,
    logger: Optional[logging.Logger] = None,
) -> ChatEndpoint:
    """Resolve the "vision" role, falling back to "chat"."""
    logger = logger or logging.getLogger("browser_agent")
    last_error: Optional[ConfigurationError] = None
    for role in MODEL_ROLES:
        try:
            endpoint = resolve_model(role, settings)
        except ConfigurationError as e:
            logger.debug(f"Role '{role}' unavailable: {e.message}")
            last_error = e
            continue
        logger.info(f"Using model for role '{role}': {getattr(endpoint, 'model_id', endpoint)}")
        return endpoint

    reason = last_error.message if last_error else "unknown"
    raise ConfigurationError(
        f"No model configured. Please assign a model in settings model routing. ({reason})",
        {"roles": list(MODEL_ROLES)},
    )


async def run_browser_agent(
    task: str,
    start_url: Optional[str] = None,
    headless: Optional[bool] = None,
    resolve_model: Callable[[str, Any], ChatEndpoint] = default_resolve_model,
    settings: Optional[AgentSettings] = None,
    sender: Optional[ProgressSender] = None,
    browser: Optional[BrowserSurface] = None,
    cancel_event: Optional[asyncio.Event] = None,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Any]:
    """
    Run one browser task and return `{success, summary, state, url}`.

    The model is taken from the "vision" role, falling back to "chat". When
    neither is configured the done event carries the error and `{error}` is
    returned without starting a browser.
    """
    settings = settings or AgentSettings()
    logger = logger or logging.getLogger("browser_agent")
    if headless is not None:
        settings = settings.model_copy(
            update={"browser": settings.browser.model_copy(update={"headless": headless})}
        )

    try:
        endpoint = select_endpoint(resolve_model, settings, logger)
    except ConfigurationError as e:
        logger.error(e.message)
        await _deliver(sender, DONE_EVENT, {"error": e.message}, logger)
        return {"error": "No model configured"}

    agent = BrowserAgent(
        settings,
        endpoint,
        browser=browser,
        sender=sender,
        cancel_event=cancel_event,
        logger=logger,
    )
    result = await agent.run(task, start_url)
    return result.to_dict()
