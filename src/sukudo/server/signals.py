"""Signal handlers for graceful daemon shutdown on SIGTERM and SIGINT."""

import asyncio
import logging
import signal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sukudo.server.lifecycle import DaemonLifecycle

logger = logging.getLogger(__name__)

_SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def setup_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    lifecycle: "DaemonLifecycle",
    shutdown_event: asyncio.Event,
) -> None:
    """Register handlers that start graceful shutdown.

    Args:
        loop: The running event loop.
        lifecycle: Lifecycle state to mark as shutting down.
        shutdown_event: Event set when a shutdown signal arrives.
    """

    def handle_shutdown_signal(sig: signal.Signals) -> None:
        logger.info("Received %s, initiating graceful shutdown", sig.name)
        lifecycle.initiate_shutdown()
        shutdown_event.set()

    for sig in _SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, handle_shutdown_signal, sig)
            logger.debug("Registered handler for %s", sig.name)
        except (ValueError, RuntimeError) as e:
            # ValueError: not in main thread; RuntimeError: loop not running
            logger.warning("Failed to register handler for %s: %s", sig.name, e)


def remove_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    """Remove the handlers installed by setup_signal_handlers()."""
    for sig in _SHUTDOWN_SIGNALS:
        try:
            loop.remove_signal_handler(sig)
        except (ValueError, RuntimeError) as e:
            logger.debug("Could not remove handler for %s: %s", sig.name, e)
