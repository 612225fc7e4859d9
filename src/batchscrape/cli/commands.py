# src/batchscrape/cli/commands.py

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import cast

from ..core.state import AppState
from ..errors import BatchScrapeError
from ..jobs.job_api import create_job_from_text, format_statistics, load_scrape_config, resolve_job_id
from ..jobs.job_models import Job

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console connector (/help, /start, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Job errors (unknown id, wrong status, bad input) become replies;
        anything else propagates to the connector.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return h2(state, args)
        except (BatchScrapeError, ValueError, OSError) as exc:
            logger.debug("Command /%s rejected: %s", name, exc)
            return f"Error: {exc}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts_local(ts: float) -> str:
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _job_arg(state: AppState, args: list[str], usage: str) -> str:
    if not args:
        raise ValueError(f"Usage: {usage}")
    job_id = resolve_job_id(state, args[0])
    if job_id is None:
        raise ValueError(f"No single job matches '{args[0]}'.")
    return job_id


def _job_line(job: Job) -> str:
    return f"{job.id[:8]}  [{job.status}]  {job.name}  - {format_statistics(job.statistics)}"


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_new(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /new <config.json> <urls.txt> [name...]
    """
    if len(args) < 2:
        return "Usage: /new <config.json> <urls.txt> [name]"

    config = load_scrape_config(args[0])
    if emit is not None:
        emit(f"Validating URLs from {args[1]}...")
    urls_text = Path(args[1]).read_text("utf-8")
    name = " ".join(args[2:]) or None

    job, checked = create_job_from_text(state, config=config, urls_text=urls_text, name=name)
    lines = [f"Created job {job.id} ({job.name}) with {len(job.urls)} URL(s)."]
    if checked.invalid:
        lines.append(f"  Skipped {len(checked.invalid)} invalid URL(s): {', '.join(checked.invalid[:5])}")
    if checked.duplicates_removed:
        lines.append(f"  Removed {checked.duplicates_removed} duplicate(s).")
    lines.append(f"  Use /start {job.id[:8]} to begin.")
    return "\n".join(lines)


def cmd_jobs(state: AppState, args: list[str]) -> str:
    jobs = state.store.search_jobs(" ".join(args)) if args else state.store.list_jobs()
    if not jobs:
        return "No batch jobs."
    return "\n".join(["Batch jobs (newest first):", *(f"  {_job_line(j)}" for j in jobs)])


def cmd_status(state: AppState, args: list[str]) -> str:
    job_id = _job_arg(state, args, "/status <job>")
    job = state.store.require_job(job_id)
    s = job.settings
    return (
        f"Job {job.id}\n"
        f"  Name: {job.name}\n"
        f"  Status: {job.status}{' (runner active)' if state.registry.is_active(job.id) else ''}\n"
        f"  Progress: {format_statistics(job.statistics)}\n"
        f"  Settings: concurrency={s.max_concurrency} delay={s.delay_between_requests}ms "
        f"retries={s.max_retries} rendering={s.rendering_mode}\n"
        f"  Created: {_ts_local(job.created_at)}  Updated: {_ts_local(job.updated_at)}"
    )


def cmd_tasks(state: AppState, args: list[str]) -> str:
    job_id = _job_arg(state, args, "/tasks <job>")
    lines = [f"URLs of job {job_id[:8]}:"]
    for t in state.store.list_tasks(job_id):
        extra = ""
        if t.result is not None:
            extra = f" rows={t.result.row_count}"
        elif t.error:
            extra = f" error={t.error}"
        lines.append(f"  {t.id[:8]} [{t.status}] retries={t.retry_count}{extra}  {t.url}")
    return "\n".join(lines)


def cmd_start(state: AppState, args: list[str]) -> str:
    job_id = _job_arg(state, args, "/start <job>")
    if state.registry.start_job(job_id):
        return f"Job {job_id[:8]} started."
    return f"Job {job_id[:8]} is already running."


def cmd_pause(state: AppState, args: list[str]) -> str:
    job_id = _job_arg(state, args, "/pause <job>")
    state.registry.pause_job(job_id)
    return f"Job {job_id[:8]} paused. URLs already in progress will finish."


def cmd_resume(state: AppState, args: list[str]) -> str:
    job_id = _job_arg(state, args, "/resume <job>")
    state.registry.resume_job(job_id)
    return f"Job {job_id[:8]} resumed."


def cmd_cancel(state: AppState, args: list[str]) -> str:
    job_id = _job_arg(state, args, "/cancel <job>")
    n = state.registry.cancel_job(job_id)
    return f"Job {job_id[:8]} cancelled ({n} pending URL(s) cancelled)."


def cmd_retry(state: AppState, args: list[str]) -> str:
    job_id = _job_arg(state, args, "/retry <job>")
    n = state.registry.retry_failed_urls(job_id)
    if not n:
        return "No failed URLs to retry."
    return f"Retrying {n} failed URL(s) of job {job_id[:8]}."


def cmd_retry_url(state: AppState, args: list[str]) -> str:
    job_id = _job_arg(state, args, "/retry-url <job> <task>")
    if len(args) < 2:
        return "Usage: /retry-url <job> <task>"
    matches = [t for t in state.store.list_tasks(job_id) if t.id.startswith(args[1])]
    if len(matches) != 1:
        return f"No single URL task matches '{args[1]}'."
    state.registry.retry_url(job_id, matches[0].id)
    return f"Retrying {matches[0].url}."


def cmd_rows(state: AppState, args: list[str]) -> str:
    job_id = _job_arg(state, args, "/rows <job> [limit]")
    limit = int(args[1]) if len(args) > 1 else 20
    rows = state.store.get_combined_rows(job_id)
    if not rows:
        return "No rows scraped yet."
    lines = [f"{len(rows)} row(s); showing {min(limit, len(rows))}:"]
    lines.extend(f"  {json.dumps(r, ensure_ascii=False)}" for r in rows[:limit])
    return "\n".join(lines)


def cmd_delete(state: AppState, args: list[str]) -> str:
    job_id = _job_arg(state, args, "/delete <job>")
    if state.registry.delete_job(job_id):
        return f"Job {job_id[:8]} deleted."
    return f"Job {job_id[:8]} not found."


def cmd_storage(state: AppState, args: list[str]) -> str:
    used = state.store.storage_usage()
    return f"Database {state.store.db_path}: {used / 1024 / 1024:.1f} MB"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("new", cmd_new, help_text="Create a job: /new <config.json> <urls.txt> [name].")
registry.register("jobs", cmd_jobs, help_text="List jobs, optionally filtered: /jobs [query].")
registry.register("status", cmd_status, help_text="Show job status and progress: /status <job>.")
registry.register("tasks", cmd_tasks, help_text="Show per-URL status: /tasks <job>.")
registry.register("start", cmd_start, help_text="Start a job: /start <job>.")
registry.register("pause", cmd_pause, help_text="Pause a job: /pause <job>.")
registry.register("resume", cmd_resume, help_text="Resume a paused job: /resume <job>.")
registry.register("cancel", cmd_cancel, help_text="Cancel a job: /cancel <job>.")
registry.register("retry", cmd_retry, help_text="Retry all failed URLs: /retry <job>.")
registry.register("retry-url", cmd_retry_url, help_text="Retry one URL: /retry-url <job> <task>.")
registry.register("rows", cmd_rows, help_text="Show scraped rows: /rows <job> [limit].")
registry.register("delete", cmd_delete, help_text="Delete a job and its results: /delete <job>.")
registry.register("storage", cmd_storage, help_text="Show database size.")
