# src/bucket_ferry/signals.py
"""
Shutdown handling for a transfer run.

A run stops in two stages. The first SIGINT or SIGTERM sets
`TransferShutdown.requested`: the engine checks it before each listing call
and the pipeline before each job, so the page in flight is finished and its
checkpoint saved. A second signal cancels the run task. Every copy still in
flight then sees `asyncio.CancelledError` and aborts its write stream, so no
partial object or dangling multipart upload is left at the destination.
"""

import asyncio
import logging
import signal
from typing import Any, Dict, List, Optional, Tuple

logger: logging.Logger = logging.getLogger(__name__)

_HANDLED_SIGNALS: Tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class TransferShutdown:
    """
    An async context manager that turns shutdown signals into run state.

    Attributes:
        requested (asyncio.Event): Set by the first signal. Pass it to the
            pipeline as its shutdown event.
        forced (bool): Whether a second signal cancelled the run task.
    """

    def __init__(self) -> None:
        self.requested: asyncio.Event = asyncio.Event()
        self.forced: bool = False
        self._task: Optional["asyncio.Task[Any]"] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous: Dict[signal.Signals, Any] = {}

    @property
    def handled_signals(self) -> List[signal.Signals]:
        """The signals whose handlers are currently installed."""
        return list(self._previous)

    def _on_signal(self, sig: signal.Signals) -> None:
        if not self.requested.is_set():
            logger.warning(
                f"Received {sig.name}. Finishing the current page before "
                "stopping; send it again to abort in-flight copies."
            )
            self.requested.set()
            return

        if self.forced:
            return
        self.forced = True
        logger.critical(f"Received {sig.name} again. Aborting in-flight copies.")
        if self._task is not None:
            self._task.cancel()

    async def __aenter__(self) -> "TransferShutdown":
        """
        Installs the handlers on the running loop.

        The task entering the context is the one a second signal cancels.

        Returns:
            TransferShutdown: This instance.
        """
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.current_task()
        for sig in _HANDLED_SIGNALS:
            previous: Any = signal.getsignal(sig)
            try:
                self._loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                # Only the main thread of a Unix process may install handlers.
                logger.warning(f"Could not set handler for {sig.name}: {e}")
                continue
            self._previous[sig] = previous
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Removes the handlers and restores the ones that were installed before."""
        for sig, previous in self._previous.items():
            try:
                if self._loop is not None:
                    self._loop.remove_signal_handler(sig)
                if previous is not None:
                    signal.signal(sig, previous)
            except (RuntimeError, ValueError, OSError) as e:
                logger.warning(f"Could not restore handler for {sig.name}: {e}")
        self._previous.clear()
        self._task = None
