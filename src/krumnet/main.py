"""Worker process entry point."""

import asyncio
import logging
import signal
import sys

from krumnet.config import Settings
from krumnet.core.worker import Worker
from krumnet.db.engine import create_engine, create_tables
from krumnet.errors import WorkerFatalError
from krumnet.jobs.store import JobStore

logger = logging.getLogger(__name__)


async def run_worker(settings: Settings, stop: asyncio.Event | None = None) -> None:
    """Create tables, connect to the job store and process jobs until stopped."""
    engine = create_engine(settings.database_url, settings.krumnet_db_busy_timeout)
    jobs = JobStore.from_settings(settings)
    try:
        await create_tables(engine)
        worker = Worker(engine, jobs, settings)
        await worker.run(stop)
    finally:
        await jobs.close()
        await engine.dispose()


def main() -> None:
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.krumnet_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("krumnet_worker_starting env=%s", settings.krumnet_env)

    async def _serve() -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        await run_worker(settings, stop)

    try:
        asyncio.run(_serve())
    except WorkerFatalError:
        logger.exception("krumnet_worker_fatal")
        sys.exit(1)


if __name__ == "__main__":
    main()
