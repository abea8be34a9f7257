import asyncio
import contextlib
import socket
from dataclasses import dataclass
from enum import Enum

import uvicorn

from rembg_gateway.core.cancellation import CancelToken
from rembg_gateway.core.config import Settings, parse_listen_address
from rembg_gateway.core.exceptions import (
    GatewayError,
    ListenerStartupFailure,
    ShutdownTimeout,
)
from rembg_gateway.core.logging import logger
from rembg_gateway.core.signals import SignalWatcher

# How long to wait for the listener after a forced exit
FORCE_EXIT_TIMEOUT = 5.0


class LifecycleState(str, Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


@dataclass
class ShutdownEvent:
    """Request to stop the service, emitted onto the lifecycle channel."""

    reason: str
    error: BaseException | None = None


class GatewayServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the SignalWatcher."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class Lifecycle:
    """Own the listener and coordinate the exactly-once graceful shutdown.

    Two tokens are shared with the application:

    - ``shutdown_token`` fires when shutdown starts; handlers refuse new
      work from then on.
    - ``work_token`` is the parent of every request token and fires when
      the grace period runs out, killing any child process still running.

    Shutdown is triggered by the first of a termination signal, a call to
    :meth:`request_shutdown`, or the listener stopping on its own. Later
    triggers are ignored.

    Example:
        lifecycle = Lifecycle(settings)
        app = create_app(settings, lifecycle=lifecycle)
        exit_code = asyncio.run(lifecycle.run(app))
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.grace_period = settings.shutdown_timeout
        self.shutdown_token = CancelToken()
        self.work_token = CancelToken()
        self.ready = asyncio.Event()
        self.bound_address: tuple[str, int] | None = None

        self._state = LifecycleState.RUNNING
        self._first_error: GatewayError | None = None
        self._events: asyncio.Queue[ShutdownEvent] = asyncio.Queue()

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def first_error(self) -> GatewayError | None:
        return self._first_error

    def request_shutdown(self, reason: str, error: BaseException | None = None) -> None:
        """Emit a shutdown event. Safe to call any number of times."""
        self._events.put_nowait(ShutdownEvent(reason=reason, error=error))

    def _record_error(self, error: GatewayError) -> None:
        if self._first_error is None:
            self._first_error = error

    def _bind(self) -> socket.socket:
        """Bind the listening socket from ``LISTEN_ADDRESS``."""
        address = self.settings.listen_address
        try:
            host, port = parse_listen_address(address)
        except ValueError as e:
            raise ListenerStartupFailure("Specify LISTEN_ADDRESS", address) from e

        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            raise ListenerStartupFailure(str(e), address) from e

        sock.set_inheritable(True)
        self.bound_address = sock.getsockname()[:2]
        return sock

    def _build_server(self, app) -> GatewayServer:  # noqa: ANN001
        config = uvicorn.Config(
            app,
            log_config=None,
            access_log=False,
            lifespan="on",
        )
        return GatewayServer(config)

    async def run(self, app) -> int:  # noqa: ANN001
        """Serve ``app`` until shutdown and return the process exit code."""
        try:
            sock = self._bind()
        except ListenerStartupFailure as e:
            logger.error(e.chain_message())
            self._record_error(e)
            self._state = LifecycleState.STOPPED
            return 1

        watcher = SignalWatcher(lambda name: self.request_shutdown(f"signal {name}"))
        watcher.start()

        server = self._build_server(app)
        serve_task = asyncio.create_task(self._serve(server, sock), name="listener")
        ready_task = asyncio.create_task(self._wait_ready(server, serve_task))
        event_task = asyncio.create_task(self._events.get())

        logger.info(f"Listening on {self.bound_address[0]}:{self.bound_address[1]}")

        try:
            await asyncio.wait({serve_task, event_task}, return_when=asyncio.FIRST_COMPLETED)

            if event_task.done():
                event = event_task.result()
            else:
                event = self._listener_stopped(serve_task)

            await self._shutdown(server, serve_task, event)
        finally:
            event_task.cancel()
            ready_task.cancel()
            watcher.stop()
            sock.close()

        if isinstance(self._first_error, ListenerStartupFailure):
            return 1
        return 0

    async def _serve(self, server: GatewayServer, sock: socket.socket) -> None:
        """Run the listener. uvicorn calls sys.exit when the app lifespan fails
        to start; that becomes a listener failure instead of leaving the loop.
        """
        try:
            await server.serve(sockets=[sock])
        except SystemExit as e:
            raise ListenerStartupFailure(
                f"listener exited with status {e.code}", self.settings.listen_address
            ) from e

    def _listener_stopped(self, serve_task: asyncio.Task) -> ShutdownEvent:
        """Turn an unrequested listener exit into a fatal shutdown event."""
        exc = None if serve_task.cancelled() else serve_task.exception()
        if isinstance(exc, ListenerStartupFailure):
            return ShutdownEvent(reason="listener failure", error=exc)
        reason = "listener exited unexpectedly" if exc is None else str(exc) or type(exc).__name__
        error = ListenerStartupFailure(reason, self.settings.listen_address)
        if exc is not None:
            error.__cause__ = exc
        return ShutdownEvent(reason="listener failure", error=error)

    async def _wait_ready(self, server: GatewayServer, serve_task: asyncio.Task) -> None:
        while not server.started:
            if serve_task.done():
                return
            await asyncio.sleep(0.05)
        self.ready.set()

    def _begin_shutdown(self, event: ShutdownEvent) -> bool:
        """Move to SHUTTING_DOWN. Returns False if that already happened."""
        if self._state is not LifecycleState.RUNNING:
            logger.debug(f"Shutdown already in progress, ignoring '{event.reason}'")
            return False

        self._state = LifecycleState.SHUTTING_DOWN
        if isinstance(event.error, GatewayError):
            self._record_error(event.error)
            logger.error(f"Exiting: {event.error.chain_message()}")
        elif event.error is not None:
            logger.error(f"Exiting: {event.error}")

        logger.info(f"Graceful shutdown started ({event.reason})")
        return True

    async def _shutdown(self, server: GatewayServer, serve_task: asyncio.Task, event: ShutdownEvent) -> None:
        if not self._begin_shutdown(event):
            return

        self.shutdown_token.cancel(event.reason)
        server.should_exit = True

        try:
            if not serve_task.done():
                await asyncio.wait_for(asyncio.shield(serve_task), timeout=self.grace_period)
            elif not serve_task.cancelled() and serve_task.exception() is not None:
                logger.debug(f"Listener task failed: {serve_task.exception()!r}")
        except asyncio.TimeoutError:
            error = ShutdownTimeout(self.grace_period)
            self._record_error(error)
            logger.error(f"{error.message}, cancelling in-flight requests")

            self.work_token.cancel("shutdown grace period elapsed")
            server.force_exit = True
            try:
                await asyncio.wait_for(serve_task, timeout=FORCE_EXIT_TIMEOUT)
            except asyncio.TimeoutError:
                logger.error(f"Listener did not stop within {FORCE_EXIT_TIMEOUT:g}s of force exit")
            except Exception as e:
                logger.error(f"Listener failed while stopping: {e!r}")
        except Exception as e:
            logger.error(f"Listener failed while stopping: {e!r}")
        finally:
            self.work_token.cancel("service stopped")
            self._state = LifecycleState.STOPPED
            logger.info("Shutdown complete")
