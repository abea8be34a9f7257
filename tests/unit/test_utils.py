import pytest
from PIL import Image

from rembg_gateway.utils.image import ImageDecodeError, decode_image, encode_image


def test_encode_decode_preserves_pixels(sample_image):
    """PNG round trip keeps dimensions and pixel data."""
    restored = decode_image(encode_image(sample_image))

    assert isinstance(restored, Image.Image)
    assert restored.size == sample_image.size
    assert restored.mode == sample_image.mode
    assert list(restored.getdata()) == list(sample_image.getdata())


def test_decode_jpeg(sample_jpeg_bytes):
    image = decode_image(sample_jpeg_bytes)
    assert image.size == (32, 32)


def test_decode_garbage_raises():
    with pytest.raises(ImageDecodeError):
        decode_image(b"this is not an image")


def test_decode_empty_raises():
    with pytest.raises(ImageDecodeError, match="empty"):
        decode_image(b"")


def test_decode_truncated_png_raises(sample_image_bytes):
    """Truncated files fail at decode time, not later."""
    with pytest.raises(ImageDecodeError):
        decode_image(sample_image_bytes[: len(sample_image_bytes) // 2])
