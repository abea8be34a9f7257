import asyncio
import io
import sys
from pathlib import Path

import pytest
from PIL import Image

from rembg_gateway.core.config import Settings
from rembg_gateway.pipelines import BasePipeline

FAKE_REMBG = Path(__file__).parent / "fixtures" / "fake_rembg.py"


def fake_tool(*args: str) -> list[str]:
    """Command line running the fake rembg tool with the given mode."""
    return [sys.executable, str(FAKE_REMBG), *args]


def make_settings(**overrides) -> Settings:
    """Settings isolated from any .env file in the working directory."""
    return Settings(_env_file=None, **overrides)


class SpyPipeline(BasePipeline):
    """Pipeline double recording every call."""

    name = "spy"

    def __init__(self, error: Exception | None = None, delay: float = 0.0):
        self.calls = []
        self.error = error
        self.delay = delay
        self.entered = asyncio.Event()

    async def process(self, image, token):
        self.calls.append(image.size)
        self.entered.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return image.convert("RGBA")


def wait_for_pid(pidfile: Path):
    """Coroutine polling until the fake tool has written its pid."""

    async def _wait() -> int:
        for _ in range(200):
            if pidfile.exists():
                text = pidfile.read_text().strip()
                if text:
                    return int(text)
            await asyncio.sleep(0.05)
        raise AssertionError("fake tool never started")

    return _wait()


@pytest.fixture
def sample_image():
    """Create a sample test image."""
    img = Image.new("RGB", (64, 48), color="red")
    return img


@pytest.fixture
def sample_image_bytes():
    """Create sample image as bytes."""
    img = Image.new("RGB", (64, 48), color="red")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def sample_jpeg_bytes():
    img = Image.new("RGB", (32, 32), color="blue")
    buffer = io.BytesIO()
    img.save(buffer, format="JPEG")
    return buffer.getvalue()
