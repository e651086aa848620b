import asyncio
import signal
from typing import Any

from loguru import logger

from batch_worker.app.composition import create_worker_dependencies
from batch_worker.app.config.settings import Settings
from batch_worker.app.core import SERVICE_NAME


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def _install_signal_handlers(shutdown: asyncio.Event) -> None:
    def request_shutdown() -> None:
        if not shutdown.is_set():
            _log("shutdown_signal")
            shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown)
        except (NotImplementedError, RuntimeError):
            pass


async def run_worker(settings: Settings | None = None, shutdown: asyncio.Event | None = None) -> None:
    """Connect, run the startup routine once, then pull/process/acknowledge until shutdown."""
    dependencies = create_worker_dependencies(settings)
    if shutdown is None:
        shutdown = asyncio.Event()
        _install_signal_handlers(shutdown)

    try:
        await dependencies.connect()
        await dependencies.startup.run()
        _log("worker_started")
        await dependencies.batch_service.run_forever(shutdown)
    finally:
        await dependencies.close()
        _log("worker_stopped")


def main() -> None:
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        _log("worker_interrupted")
    except Exception as e:
        logger.exception("worker failed: {}", e)
        raise


if __name__ == "__main__":
    main()
