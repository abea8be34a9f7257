from abc import ABC, abstractmethod

from PIL import Image

from rembg_gateway.core.cancellation import CancelToken


class BasePipeline(ABC):
    """Abstract base class for image processing pipelines."""

    name: str = "pipeline"

    def _ensure_loaded(self, image: Image.Image) -> Image.Image:
        """Make sure pixel data is in memory before it is handed off."""
        image.load()
        return image

    @abstractmethod
    async def process(self, image: Image.Image, token: CancelToken) -> Image.Image:
        """Process an image.

        Implementations must return promptly once ``token`` is cancelled
        and raise the token's error instead of a result.
        """
        pass
