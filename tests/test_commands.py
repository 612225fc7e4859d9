# tests/test_commands.py

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from batchscrape.cli.commands import CommandRegistry
from batchscrape.cli.commands import registry as commands
from batchscrape.jobs.job_models import JobStatus


def test_command_registry_routes_2_and_3_params(state) -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}
    notes: list[str] = []

    def h2(state, args):
        called["h2"] += 1
        return "h2:" + ",".join(args)

    def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a")
    reg.register("b", h3, "b", aliases=["bee"])

    assert reg.handle(state, "/a x y") == "h2:x,y"
    assert reg.handle(state, "/BEE", emit=notes.append) == "h3"
    assert called == {"h2": 1, "h3": 1}
    assert notes == ["note"]


def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello") is None
    assert "Unknown command" in (reg.handle(state, "/nope") or "")
    assert "Empty command" in (reg.handle(state, "/") or "")


def test_help_lists_job_commands(state) -> None:
    reply = commands.handle(state, "/help") or ""
    for name in ("/new", "/start", "/pause", "/resume", "/cancel", "/retry", "/retry-url"):
        assert name in reply
    assert commands.handle(state, "/?") == reply


def _write_inputs(tmp_path: Path) -> tuple[Path, Path]:
    config = tmp_path / "config.json"
    config.write_text(
        json.dumps({"mainSelector": "article", "columns": [{"name": "title", "selector": "h1"}]}),
        "utf-8",
    )
    urls = tmp_path / "urls.txt"
    urls.write_text(
        "https://blog.example.com/1\nhttps://blog.example.com/2\nhttps://blog.example.com/1\nnope\n",
        "utf-8",
    )
    return config, urls


def test_new_creates_job_from_files(state, tmp_path: Path) -> None:
    config, urls = _write_inputs(tmp_path)
    notes: list[str] = []

    reply = commands.handle(state, f"/new {config} {urls} Blog posts", emit=notes.append) or ""

    assert reply.startswith("Created job ")
    assert "Skipped 1 invalid URL(s): nope" in reply
    assert "Removed 1 duplicate(s)." in reply
    assert notes and "Validating URLs" in notes[0]

    (job,) = state.store.list_jobs()
    assert job.name == "Blog posts"
    assert job.urls == ("https://blog.example.com/1", "https://blog.example.com/2")
    assert job.config.main_selector == "article"

    listing = commands.handle(state, "/jobs blog") or ""
    assert job.id[:8] in listing
    assert "0/2" in listing

    status = commands.handle(state, f"/status {job.id[:8]}") or ""
    assert "Status: pending" in status
    assert "concurrency=2" in status


def test_errors_become_replies(state, tmp_path: Path) -> None:
    assert commands.handle(state, "/jobs") == "No batch jobs."
    assert (commands.handle(state, "/status") or "").startswith("Error: Usage:")
    assert "No single job matches" in (commands.handle(state, "/start deadbeef") or "")
    assert (commands.handle(state, f"/new {tmp_path / 'missing.json'} x.txt") or "").startswith("Error:")

    config, _ = _write_inputs(tmp_path)
    empty = tmp_path / "empty.txt"
    empty.write_text("# nothing here\n", "utf-8")
    assert "No valid URLs" in (commands.handle(state, f"/new {config} {empty}") or "")

    job = state.store.create_job({"mainSelector": "li"}, ["https://a.example.com/"])
    assert "not paused" in (commands.handle(state, f"/resume {job.id}") or "")


@pytest.mark.asyncio
async def test_start_pause_and_rows(state, extractor) -> None:
    gate = extractor.gate("https://a.example.com/1")
    job = state.store.create_job(
        {"mainSelector": "li", "columns": [{"name": "title", "selector": "h2"}]},
        ["https://a.example.com/1", "https://a.example.com/2", "https://a.example.com/3"],
        settings={"max_concurrency": 1},
    )

    assert commands.handle(state, f"/start {job.id[:8]}") == f"Job {job.id[:8]} started."
    assert "already running" in (commands.handle(state, f"/start {job.id}") or "")

    await extractor.wait_started("https://a.example.com/1")
    assert "paused" in (commands.handle(state, f"/pause {job.id}") or "")
    gate.set()
    await asyncio.wait_for(state.registry.wait(job.id), timeout=5)
    assert state.store.require_job(job.id).status == JobStatus.PAUSED

    rows = commands.handle(state, f"/rows {job.id} 1") or ""
    assert rows.startswith("2 row(s); showing 1:")
    assert '"url": "https://a.example.com/1"' in rows

    assert commands.handle(state, f"/resume {job.id}") == f"Job {job.id[:8]} resumed."
    await asyncio.wait_for(state.registry.wait(job.id), timeout=5)
    assert state.store.require_job(job.id).status == JobStatus.COMPLETED

    tasks = commands.handle(state, f"/tasks {job.id}") or ""
    assert tasks.count("[completed]") == 3
    assert commands.handle(state, f"/delete {job.id}") == f"Job {job.id[:8]} deleted."
