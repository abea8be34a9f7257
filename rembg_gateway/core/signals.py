import asyncio
import signal
from typing import Callable, Iterable

from rembg_gateway.core.logging import logger

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SignalWatcher:
    """Turn the first termination signal into a single shutdown event.

    Handlers are installed on the running event loop. Only the first signal
    reaches ``on_signal``; later ones are logged and dropped since the
    process is already on its way out.
    """

    def __init__(
        self,
        on_signal: Callable[[str], None],
        signals: Iterable[signal.Signals] = TERMINATION_SIGNALS,
    ):
        self._on_signal = on_signal
        self._signals = tuple(signals)
        self._fired = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_handlers: list[signal.Signals] = []
        self._previous: dict[signal.Signals, object] = {}

    @property
    def fired(self) -> bool:
        return self._fired

    def start(self) -> None:
        """Subscribe to the configured signals on the running loop."""
        self._loop = asyncio.get_running_loop()

        for sig in self._signals:
            try:
                self._loop.add_signal_handler(sig, self._handle, sig)
                self._loop_handlers.append(sig)
                continue
            except (NotImplementedError, RuntimeError):
                pass

            # Loops without add_signal_handler (e.g. Windows)
            try:
                self._previous[sig] = signal.signal(sig, self._handle_threadsafe)
            except ValueError:
                logger.warning(f"Cannot watch {sig.name} outside the main thread")

    def stop(self) -> None:
        """Remove handlers and restore whatever was installed before."""
        for sig in self._loop_handlers:
            self._loop.remove_signal_handler(sig)
        self._loop_handlers.clear()

        for sig, previous in self._previous.items():
            signal.signal(sig, previous)
        self._previous.clear()

    def _handle_threadsafe(self, signum: int, frame) -> None:  # noqa: ANN001
        self._loop.call_soon_threadsafe(self._handle, signal.Signals(signum))

    def _handle(self, sig: signal.Signals) -> None:
        if self._fired:
            logger.debug(f"Signal '{sig.name}' ignored, shutdown already requested")
            return

        self._fired = True
        logger.warning(f"Signal '{sig.name}' was caught. Exiting")
        self._on_signal(sig.name)
