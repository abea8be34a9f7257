import asyncio
import contextlib
import shlex
import time
from typing import Sequence

from PIL import Image
from prometheus_client import Counter, Histogram

from rembg_gateway.core.cancellation import CancelToken
from rembg_gateway.core.exceptions import ExternalToolFailure, OutputDecodeFailure
from rembg_gateway.core.logging import ctx_logger
from rembg_gateway.pipelines.base import BasePipeline
from rembg_gateway.utils.image import ImageDecodeError, decode_image, encode_image

# =============================================================================
# TOOL METRICS (Prometheus)
# =============================================================================

TOOL_RUNS = Counter(
    "rembg_gateway_tool_runs_total",
    "External tool invocations by outcome",
    ["pipeline", "outcome"],
)

TOOL_DURATION = Histogram(
    "rembg_gateway_tool_duration_seconds",
    "Wall time of external tool invocations",
    ["pipeline"],
    buckets=(0.1, 0.25, 0.5, 1, 2.5, 5, 10, 15, 30, 60, 120),
)


class SubprocessPipeline(BasePipeline):
    """Run an image through an external command over stdin/stdout.

    The image is encoded as PNG and piped to the child's stdin; stdout is
    decoded as the result and stderr kept for diagnostics. One child is
    spawned per call and nothing is shared between calls, so concurrent
    requests are fully isolated.

    The child is bound to the caller's ``CancelToken``: when the token fires
    (client gone, shutdown grace period elapsed, deadline hit) the child is
    killed and reaped before the error is raised.
    """

    name = "subprocess"

    def __init__(self, command: Sequence[str], timeout: float | None = None):
        if not command:
            raise ValueError("command must not be empty")
        self.command = list(command)
        self.timeout = timeout

    @property
    def command_line(self) -> str:
        return shlex.join(self.command)

    async def process(self, image: Image.Image, token: CancelToken) -> Image.Image:
        source = await asyncio.to_thread(encode_image, self._ensure_loaded(image))

        with token.child(timeout=self.timeout) as scope:
            output = await self._run(source, scope)

        try:
            return await asyncio.to_thread(decode_image, output)
        except ImageDecodeError as e:
            TOOL_RUNS.labels(pipeline=self.name, outcome="bad_output").inc()
            raise OutputDecodeFailure(self.command_line, len(output)) from e

    async def _run(self, source: bytes, token: CancelToken) -> bytes:
        """Feed ``source`` to a fresh child and return its stdout."""
        token.raise_if_cancelled()

        ctx_logger.debug("Spawning external tool", cmd=self.command_line, input_size=len(source))
        start_time = time.monotonic()

        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            TOOL_RUNS.labels(pipeline=self.name, outcome="spawn_error").inc()
            ctx_logger.error("Unable to start external tool", cmd=self.command_line, error=str(e))
            raise ExternalToolFailure(self.command_line, None, str(e)) from e

        communicate = asyncio.ensure_future(proc.communicate(source))
        cancelled = asyncio.ensure_future(token.wait())

        try:
            await asyncio.wait({communicate, cancelled}, return_when=asyncio.FIRST_COMPLETED)

            if not communicate.done():
                await self._kill(proc)
                TOOL_RUNS.labels(pipeline=self.name, outcome="cancelled").inc()
                ctx_logger.warning(
                    "External tool cancelled",
                    cmd=self.command_line,
                    pid=proc.pid,
                    reason=token.reason,
                )
                raise token.error()

            stdout, stderr = communicate.result()
        finally:
            cancelled.cancel()
            # Task cancellation lands here too: never leave the child behind
            if proc.returncode is None:
                await self._kill(proc)
            if not communicate.done():
                communicate.cancel()
            TOOL_DURATION.labels(pipeline=self.name).observe(time.monotonic() - start_time)

        if proc.returncode != 0:
            diagnostics = stderr.decode("utf-8", errors="replace")
            TOOL_RUNS.labels(pipeline=self.name, outcome="failed").inc()
            ctx_logger.error(
                "Error while running external tool",
                cmd=self.command_line,
                returncode=proc.returncode,
                stderr=diagnostics,
            )
            raise ExternalToolFailure(self.command_line, proc.returncode, diagnostics)

        TOOL_RUNS.labels(pipeline=self.name, outcome="success").inc()
        ctx_logger.debug(
            "External tool finished",
            cmd=self.command_line,
            output_size=len(stdout),
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )
        return stdout

    async def _kill(self, proc: asyncio.subprocess.Process) -> None:
        """Kill the child and reap it so no zombie or orphan is left."""
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
