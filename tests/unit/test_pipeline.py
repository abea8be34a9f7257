import asyncio
import logging
import os

import pytest
from PIL import Image

from conftest import fake_tool, make_settings, wait_for_pid
from rembg_gateway.core.cancellation import CancelToken
from rembg_gateway.core.exceptions import (
    ErrorKind,
    ExternalToolFailure,
    OutputDecodeFailure,
    ProcessCancelled,
    ToolTimeout,
)
from rembg_gateway.pipelines import BackgroundRemovePipeline, SubprocessPipeline


def assert_reaped(pid: int):
    """The child must be gone, not left running or as a zombie."""
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


def test_process_returns_tool_output(sample_image):
    pipeline = SubprocessPipeline(fake_tool("echo"))

    result = asyncio.run(pipeline.process(sample_image, CancelToken()))

    assert result.size == sample_image.size
    assert list(result.getdata()) == list(sample_image.getdata())


def test_nonzero_exit_raises_tool_failure_with_stderr(sample_image, caplog):
    caplog.set_level(logging.DEBUG)
    pipeline = SubprocessPipeline(fake_tool("fail"))

    with pytest.raises(ExternalToolFailure) as exc_info:
        asyncio.run(pipeline.process(sample_image, CancelToken()))

    error = exc_info.value
    assert error.kind is ErrorKind.EXTERNAL_TOOL_FAILURE
    assert error.returncode == 1
    assert "boom" in error.stderr
    assert "fake_rembg.py" in error.command
    assert error.command.endswith(" fail")

    logged = [getattr(r, "extra", {}) for r in caplog.records if r.levelno == logging.ERROR]
    assert any("boom" in str(extra.get("stderr")) for extra in logged)
    assert any("fake_rembg.py" in str(extra.get("cmd")) for extra in logged)


def test_garbage_output_raises_output_decode_failure(sample_image):
    pipeline = SubprocessPipeline(fake_tool("garbage"))

    with pytest.raises(OutputDecodeFailure) as exc_info:
        asyncio.run(pipeline.process(sample_image, CancelToken()))

    assert exc_info.value.kind is ErrorKind.OUTPUT_DECODE_FAILURE
    assert exc_info.value.details["output_size"] == len(b"definitely not an image")


def test_missing_executable_raises_tool_failure(sample_image, tmp_path):
    pipeline = SubprocessPipeline([str(tmp_path / "no-such-tool"), "i"])

    with pytest.raises(ExternalToolFailure) as exc_info:
        asyncio.run(pipeline.process(sample_image, CancelToken()))

    assert exc_info.value.returncode is None
    assert isinstance(exc_info.value.__cause__, OSError)


def test_already_cancelled_token_never_spawns(sample_image, tmp_path):
    pidfile = tmp_path / "pid"
    pipeline = SubprocessPipeline(fake_tool("sleep", str(pidfile)))
    token = CancelToken()
    token.cancel("gone")

    with pytest.raises(ProcessCancelled, match="gone"):
        asyncio.run(pipeline.process(sample_image, token))

    assert not pidfile.exists()


def test_cancel_kills_running_child(sample_image, tmp_path):
    pidfile = tmp_path / "pid"
    pipeline = SubprocessPipeline(fake_tool("sleep", str(pidfile)))

    async def scenario():
        token = CancelToken()
        task = asyncio.create_task(pipeline.process(sample_image, token))
        pid = await wait_for_pid(pidfile)
        token.cancel("client disconnected")
        with pytest.raises(ProcessCancelled) as exc_info:
            await asyncio.wait_for(task, timeout=5)
        assert not isinstance(exc_info.value, ToolTimeout)
        return pid

    pid = asyncio.run(scenario())
    assert_reaped(pid)


def test_parent_cancel_reaches_child(sample_image, tmp_path):
    """Cancelling the lifecycle-level token cancels the request below it."""
    pidfile = tmp_path / "pid"
    pipeline = SubprocessPipeline(fake_tool("sleep", str(pidfile)))

    async def scenario():
        root = CancelToken()
        with root.child() as request_token:
            task = asyncio.create_task(pipeline.process(sample_image, request_token))
            pid = await wait_for_pid(pidfile)
            root.cancel("grace period elapsed")
            with pytest.raises(ProcessCancelled, match="grace period elapsed"):
                await asyncio.wait_for(task, timeout=5)
        return pid

    assert_reaped(asyncio.run(scenario()))


def test_task_cancellation_kills_child(sample_image, tmp_path):
    pidfile = tmp_path / "pid"
    pipeline = SubprocessPipeline(fake_tool("sleep", str(pidfile)))

    async def scenario():
        task = asyncio.create_task(pipeline.process(sample_image, CancelToken()))
        pid = await wait_for_pid(pidfile)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return pid

    assert_reaped(asyncio.run(scenario()))


def test_timeout_raises_tool_timeout(sample_image, tmp_path):
    pidfile = tmp_path / "pid"
    pipeline = SubprocessPipeline(fake_tool("sleep", str(pidfile)), timeout=1.5)

    with pytest.raises(ToolTimeout) as exc_info:
        asyncio.run(pipeline.process(sample_image, CancelToken()))

    assert exc_info.value.status_code == 504
    assert_reaped(int(pidfile.read_text()))


def test_concurrent_calls_are_isolated():
    good = SubprocessPipeline(fake_tool("echo"))
    bad = SubprocessPipeline(fake_tool("garbage"))
    red = Image.new("RGB", (10, 10), color="red")
    green = Image.new("RGB", (20, 5), color="green")

    async def scenario():
        return await asyncio.gather(
            good.process(red, CancelToken()),
            bad.process(red, CancelToken()),
            good.process(green, CancelToken()),
            return_exceptions=True,
        )

    first, second, third = asyncio.run(scenario())

    assert first.size == (10, 10)
    assert first.getpixel((0, 0)) == (255, 0, 0)
    assert isinstance(second, OutputDecodeFailure)
    assert third.size == (20, 5)
    assert third.getpixel((0, 0)) == (0, 128, 0)


def test_background_remove_pipeline_from_settings():
    settings = make_settings(rembg_path="/opt/rembg", rembg_args=["i", "-m", "u2netp"], rembg_timeout=12)

    pipeline = BackgroundRemovePipeline.from_settings(settings)

    assert pipeline.command == ["/opt/rembg", "i", "-m", "u2netp"]
    assert pipeline.timeout == 12
    assert pipeline.command_line == "/opt/rembg i -m u2netp"


def test_empty_command_rejected():
    with pytest.raises(ValueError):
        SubprocessPipeline([])
