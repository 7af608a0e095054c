"""
Test image_handler

Hashing, format detection and size reading for raw image data and files on disk.
"""

import hashlib

import pytest

from wallter import image_handler
from wallter.image_handler import InvalidImageError

from conftest import make_image


def test_checksum_is_sha256():
    data = b"not really an image"

    assert image_handler.checksum(data) == hashlib.sha256(data).hexdigest()


def test_file_checksum_matches_bytes_checksum(tmp_path):
    data = make_image(300, 200)
    path = tmp_path / "image.png"
    path.write_bytes(data)

    assert image_handler.file_checksum(path) == image_handler.checksum(data)


@pytest.mark.parametrize("format, expected", [("PNG", "PNG"), ("JPEG", "JPEG"), ("BMP", "BMP")])
def test_validate_image_returns_format(format, expected):
    assert image_handler.validate_image(make_image(format=format)) == expected


def test_image_size_from_bytes_and_path(tmp_path):
    data = make_image(640, 480)
    path = tmp_path / "image.png"
    path.write_bytes(data)

    assert image_handler.image_size(data) == (640, 480)
    assert image_handler.image_size(path) == (640, 480)


@pytest.mark.parametrize(
    "input",
    [
        b"",
        b"<html>rate limited</html>",
        "/not/a/real/absolute/path.jpg",
    ],
)
def test_validate_image_failure(input):
    """
    Verify that invalid inputs raise InvalidImageError:
    - empty data
    - non-image data
    - missing file
    """

    with pytest.raises(InvalidImageError):
        image_handler.validate_image(input)


def test_extension_for():
    assert image_handler.extension_for("JPEG") == "jpg"
    assert image_handler.extension_for("PNG") == "png"
    assert image_handler.extension_for("ICO") == "ico"


def test_is_image_file(tmp_path):
    image = tmp_path / "image.jpg"
    image.write_bytes(make_image(format="JPEG"))

    text = tmp_path / "notes.txt"
    text.write_text("hello")

    fake = tmp_path / "fake.png"
    fake.write_text("definitely not a png")

    assert image_handler.is_image_file(image)
    assert not image_handler.is_image_file(text)
    assert not image_handler.is_image_file(fake)
