"""
conftest.py

Test configuration for wallter tests.

Defines Pytest fixtures for supplying test data to tests across the entire
test suite. Test images are generated with Pillow rather than kept on disk, so
every test gets fresh files with exactly the size it asks for. Fixtures used
within only a single module are defined directly in that module.
"""

import io
from itertools import count

import pytest
from PIL import Image

from wallter import image_handler
from wallter.cache_handler import CacheStore, SourceMeta
from wallter.config import MonitorConfig


def make_image(width: int = 64, height: int = 36, color=(200, 30, 30), format: str = "PNG") -> bytes:
    """Encode a solid color image and return the raw bytes."""

    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format=format)
    return buffer.getvalue()


@pytest.fixture
def image_factory():
    """
    Return a function producing image bytes. Every call uses a new color, so every image has a
    different checksum unless the caller passes the same color twice.
    """

    colors = count(1)

    def inner(width: int = 64, height: int = 36, color=None, format: str = "PNG") -> bytes:
        if color is None:
            n = next(colors)
            color = (n % 256, (n * 7) % 256, (n * 13) % 256)
        return make_image(width, height, color, format)

    return inner


@pytest.fixture
def cache(tmp_path) -> CacheStore:
    return CacheStore(tmp_path / "downloads", favorites_dir=tmp_path / "favorites")


@pytest.fixture
def store_image(cache, image_factory):
    """Put a freshly generated image into the cache and return its record."""

    def inner(width: int = 64, height: int = 36, source_id: str = None):
        data = image_factory(width, height)
        meta = SourceMeta(id=source_id, url=f"https://example.test/{source_id}") if source_id else None
        return cache.put(image_handler.checksum(data), data, meta)

    return inner


@pytest.fixture
def landscape_monitor() -> MonitorConfig:
    return MonitorConfig(id="0", name="DP-1", width=1920, height=1080, primary=True)


@pytest.fixture
def portrait_monitor() -> MonitorConfig:
    return MonitorConfig(id="1", name="HDMI-1", width=1080, height=1920)
