"""Run the browser agent with one or more tasks"""
import asyncio
import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from agent import DONE_EVENT, BrowserAgent, select_endpoint
from config import load_config
from exceptions import ConfigurationError
from model_router import resolve_model
from reporters import JSONReporter
from session_types import SessionResult


logger = logging.getLogger(__name__)


class LoggingSender:
    """Progress sender that writes agent events to the log."""

    def __init__(self, log: logging.Logger):
        self.log = log

    def send(self, event_name: str, payload: Dict[str, Any]) -> None:
        if event_name == DONE_EVENT:
            if payload.get("error"):
                self.log.error(payload["error"])
            return
        phase = payload.get("phase", "")
        message = payload.get("message", "")
        if phase in ("error", "abort"):
            self.log.warning(f"[Step {payload.get('step')}] {message}")
        else:
            self.log.info(f"[Step {payload.get('step')}] {message}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the browser automation agent")
    parser.add_argument(
        "--task",
        type=str,
        action="append",
        required=True,
        help="The task for the agent to perform (repeat to run several tasks in order)"
    )
    parser.add_argument(
        "--start-url",
        type=str,
        default=None,
        help="URL to open before the first step (default about:blank)"
    )
    parser.add_argument(
        "--headful",
        action="store_true",
        default=None,
        help="Run browser in headful mode (show GUI)"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config file (JSON or YAML); defaults to ./config.json when present"
    )
    parser.add_argument(
        "--browser",
        choices=["chromium", "firefox", "webkit"],
        default=None,
        help="Browser engine to use"
    )
    parser.add_argument(
        "--mode",
        choices=["vision", "dom-ref", "text-only"],
        default=None,
        help="Starting interaction mode"
    )
    parser.add_argument(
        "--max-steps",
        type=int,
        default=None,
        help="Outer step budget per task"
    )
    parser.add_argument(
        "--save-trace",
        action="store_true",
        default=None,
        help="Write a JSON trace report per session"
    )
    parser.add_argument(
        "--reports-dir",
        type=str,
        default=None,
        help="Directory for trace reports"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=None,
        help="Enable debug logging"
    )
    return parser


async def run_tasks(args: argparse.Namespace) -> List[SessionResult]:
    """Run each task in its own session and browser."""
    settings = load_config(
        Path(args.config) if args.config else None,
        cli_overrides={
            "headful": args.headful,
            "browser": args.browser,
            "mode": args.mode,
            "max_steps": args.max_steps,
            "save_trace": args.save_trace,
            "reports_dir": args.reports_dir,
            "verbose": args.verbose,
        },
    )
    if settings.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    endpoint = select_endpoint(resolve_model, settings, logger)
    sender = LoggingSender(logger)

    results: List[SessionResult] = []
    for task in args.task:
        agent = BrowserAgent(settings, endpoint, sender=sender, logger=logger)
        result = await agent.run(task, args.start_url)
        logger.info(f"[{result.state.value}] {result.summary}")
        results.append(result)

    if settings.reporting.save_trace and len(results) > 1:
        path = JSONReporter().generate_suite(results, settings.reporting.reports_folder)
        logger.info(f"Suite report written to {path}")
    return results


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='[%(levelname)s] %(message)s'
    )
    args = build_parser().parse_args(argv)

    try:
        results = asyncio.run(run_tasks(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    for result in results:
        print(result.summary)
    return 0 if all(r.success for r in results) else 1


if __name__ == "__main__":
    sys.exit(main())
