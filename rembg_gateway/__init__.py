"""HTTP gateway that removes image backgrounds with an external rembg process."""

__version__ = "1.0.0"
