"""
Process entry point for one execution window.

The host (cron, a mobile background scheduler, a systemd timer) starts
this process when it grants a window. SIGTERM or SIGINT revokes the window:
the in-flight chain is released back to the queue and the process exits.

    python -m chain_engine.orchestrator.runner
"""

import asyncio
import logging
import signal
from typing import Optional

from chain_engine.config import Settings, get_settings
from chain_engine.core.models import BatchReport
from chain_engine.core.window import ExecutionWindow
from chain_engine.orchestrator.scheduler import ChainScheduler
from chain_engine.storage.legacy import LegacyKeyValueStore
from chain_engine.storage.redis.legacy_store import RedisLegacyStore
from chain_engine.workers.base import WorkerFactory
from chain_engine.workers.handlers import build_default_factory

logger = logging.getLogger(__name__)


def _install_signal_handlers(window: ExecutionWindow) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, window.cancel, f"received {sig.name}")
        except NotImplementedError:
            logger.debug(f"Signal handlers not supported, {sig.name} will not revoke the window")


async def run_window(
    settings: Optional[Settings] = None,
    worker_factory: Optional[WorkerFactory] = None,
) -> BatchReport:
    """Start the scheduler, drain one window, and shut down."""
    settings = settings or get_settings()

    legacy_store: Optional[LegacyKeyValueStore] = None
    if settings.legacy.enabled:
        legacy_store = await RedisLegacyStore.connect(settings.legacy)

    try:
        scheduler = ChainScheduler.create(
            worker_factory or build_default_factory(),
            settings=settings,
            legacy_store=legacy_store,
        )
        await scheduler.start()

        window = ExecutionWindow.open(settings.executor.window_duration)
        _install_signal_handlers(window)

        return await scheduler.run_window(window)
    finally:
        if legacy_store is not None:
            await legacy_store.close()


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    report = asyncio.run(run_window(settings))
    logger.info(
        f"Window finished: {report.executed} executed, {report.remaining} remaining"
        + (" (requesting another window)" if report.needs_another_window else "")
    )


if __name__ == "__main__":
    main()
