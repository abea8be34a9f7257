import io

from PIL import Image, UnidentifiedImageError

# Lossless format used on both sides of the external tool and in responses
OUTPUT_FORMAT = "PNG"
OUTPUT_CONTENT_TYPE = "image/png"

# Pillow reports broken input through several exception types
DECODE_ERRORS = (
    UnidentifiedImageError,
    Image.DecompressionBombError,
    OSError,
    EOFError,
    SyntaxError,
    ValueError,
)


class ImageDecodeError(ValueError):
    """Bytes could not be decoded into an image."""


def decode_image(data: bytes) -> Image.Image:
    """Decode bytes into a fully loaded PIL Image.

    The pixel data is loaded eagerly so truncated files fail here and not
    later while the image is being re-encoded.

    Raises:
        ImageDecodeError: If the data is empty or not a supported image.
    """
    if not data:
        raise ImageDecodeError("empty image data")

    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except DECODE_ERRORS as e:
        raise ImageDecodeError(str(e) or type(e).__name__) from e

    return image


def encode_image(image: Image.Image, format: str = OUTPUT_FORMAT) -> bytes:
    """Encode a PIL Image into bytes."""
    buffer = io.BytesIO()
    image.save(buffer, format=format)
    return buffer.getvalue()
