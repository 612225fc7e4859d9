# src/batchscrape/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, restarts jobs interrupted by a previous
exit, then runs the console REPL (or just drains active jobs when disabled).
"""

from __future__ import annotations

import asyncio
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _serve(state: AppState) -> None:
    state.registry.recover_interrupted_jobs()

    try:
        if state.settings.console_enabled:
            await run_console_loop(state)
        else:
            logger.info("Console disabled. Draining active jobs, then exiting.")
            while state.registry.active_job_ids():
                await asyncio.gather(
                    *(state.registry.wait(job_id) for job_id in state.registry.active_job_ids()),
                    return_exceptions=True,
                )
    finally:
        await state.registry.shutdown()


def main() -> None:
    settings = get_settings()

    log_file = setup_logging(log_dir=settings.data_dir, console_level=settings.log_level)
    logger.debug("Logging to %s", log_file)

    logger.info("Starting %s...", settings.app_name)
    state = create_initial_state(settings=settings)

    try:
        asyncio.run(_serve(state))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")

    logger.info("Bye.")


if __name__ == "__main__":
    main()
