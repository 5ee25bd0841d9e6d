import asyncio
import signal

from shared.logger import setup_logger

logger = setup_logger("LIFECYCLE")


def install_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set stop_event on SIGINT/SIGTERM so entry points can shut down gracefully."""
    loop = asyncio.get_running_loop()

    def _request_stop(sig: signal.Signals) -> None:
        logger.info("🛑 Received exit signal %s...", sig.name)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop, sig)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(sig, lambda s, _frame: loop.call_soon_threadsafe(stop_event.set))


async def wait_first(*aws) -> None:
    """Wait until any of the awaitables completes, cancelling the rest."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()
