"""
Image Handler

Utilities for inspecting raw image data before it enters the cache.

Wallter never modifies pixels. Everything here is read-only: hashing content
for the cache's dedup key, identifying the image format so downloaded files get
a sensible extension, and reading dimensions so the monitor assigner can score
candidates by aspect ratio and resolution.
"""

import io
import hashlib
from pathlib import Path
from typing import Union

from PIL import Image, UnidentifiedImageError

# Pillow format name -> file extension used for cached files
EXTENSIONS = {
    "JPEG": "jpg",
    "PNG": "png",
    "WEBP": "webp",
    "GIF": "gif",
    "BMP": "bmp",
    "TIFF": "tiff",
}

CHUNK_SIZE = 1024 * 1024


class InvalidImageError(Exception):
    """
    Raised when a provided binary input is not an image. Wrapper around the PIL
    UnidentifiedImageError for better identification of errors during debugging
    and custom error messaging.
    """

    pass


def checksum(data: bytes) -> str:
    """Return the SHA-256 hex digest of data. This is the cache dedup key."""

    return hashlib.sha256(data).hexdigest()


def file_checksum(path: Path) -> str:
    """Hash a file on disk in chunks so large images are not read into memory at once."""

    digest = hashlib.sha256()
    with open(path, "rb") as file:
        for chunk in iter(lambda: file.read(CHUNK_SIZE), b""):
            digest.update(chunk)

    return digest.hexdigest()


def validate_image(input: Union[Path, str, bytes]) -> str:
    """
    Determine whether input is a valid image and return its format name (e.g. 'JPEG').
    Accepts a path or raw bytes. The PIL open method reads the content header to determine
    file type but doesn't load the pixel data, so it is cheap enough to use as validation.
    """

    source = io.BytesIO(input) if isinstance(input, bytes) else input

    try:
        with Image.open(source) as image:
            return image.format

    except UnidentifiedImageError:
        raise InvalidImageError("Input does not appear to be an image.")

    except FileNotFoundError:
        raise InvalidImageError(f"Input {str(input)} could not be found.")


def image_size(input: Union[Path, str, bytes]) -> tuple[int, int]:
    """Return (width, height) of an image given as a path or raw bytes."""

    source = io.BytesIO(input) if isinstance(input, bytes) else input

    try:
        with Image.open(source) as image:
            return image.size

    except UnidentifiedImageError:
        raise InvalidImageError("Input does not appear to be an image.")

    except FileNotFoundError:
        raise InvalidImageError(f"Input {str(input)} could not be found.")


def extension_for(format_name: str) -> str:
    """Map a Pillow format name to the extension used for cached files."""

    return EXTENSIONS.get(format_name, format_name.lower())


def is_image_file(path: Path) -> bool:
    """Cheap check used when scanning directories: suffix first, then the header."""

    if path.suffix.lower().lstrip(".") not in set(EXTENSIONS.values()) | {"jpeg", "tif"}:
        return False

    try:
        validate_image(path)
    except InvalidImageError:
        return False

    return True
