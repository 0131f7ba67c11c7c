#!/usr/bin/env python3
"""Start the ARQ worker for syncs and alert checks.

USAGE:
    python -m app.workers.start_arq_worker

    Or directly:
    arq app.workers.arq_worker.WorkerSettings
"""

import logging
import sys

from arq import run_worker

from app.workers.arq_worker import WorkerSettings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


def main():
    """Run the worker until interrupted (cron: sync_all every 6h, alert check hourly)."""
    logger.info(
        "Starting ARQ worker: %d functions, %d cron jobs",
        len(WorkerSettings.functions), len(WorkerSettings.cron_jobs),
    )
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
