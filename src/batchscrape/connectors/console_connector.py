# src/batchscrape/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..jobs.job_models import JobStatus
from ..jobs.job_store import StoreEvent, StoreEventKind

logger = logging.getLogger(__name__)

_TERMINAL = (JobStatus.COMPLETED, JobStatus.CANCELLED, JobStatus.PAUSED)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _watch_job_status(state: AppState):
    """Print a line whenever a job reaches completed/cancelled/paused."""
    last: dict[str, JobStatus] = {}

    def on_event(event: StoreEvent) -> None:
        if event.kind != StoreEventKind.JOB_UPDATED:
            return
        job = state.store.get_job(event.job_id)
        if job is None or last.get(job.id) == job.status:
            return
        last[job.id] = job.status
        if job.status in _TERMINAL:
            _print_ts(f"[JOB] {job.id[:8]} {job.name}: {job.status}")

    return state.store.subscribe(on_event)


async def run_console_loop(state: AppState) -> None:
    """
    Async REPL: stdin is read in a worker thread so runners keep draining on the
    event loop while the user types.
    """
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Use /help for commands. Use /exit to quit.\n")
    unsubscribe = _watch_job_status(state)

    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, ">>> ")).strip()
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            try:
                cmd_response = command_registry.handle(state, user_input, emit=_print_ts)
            except Exception:
                logger.exception("Command handler crashed.")
                cmd_response = "Internal error while handling a command."

            if cmd_response is None:
                cmd_response = "Commands start with '/'. Use /help to list them."
            _print_ts(cmd_response)
    finally:
        unsubscribe()
        logger.info("Console connector finished.")
