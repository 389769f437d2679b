"""Tests for paintworks.core.gallery — saving generated images."""

from __future__ import annotations

import io
from pathlib import Path

import pytest
from PIL import Image

from paintworks.core.errors import UpstreamGenerationError
from paintworks.core.gallery import GALLERY_URL_PREFIX, save_painting_image


def _encode(image: Image.Image, fmt: str) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def make_png(color: str = "red") -> bytes:
    return _encode(Image.new("RGB", (8, 8), color), "PNG")


class TestSavePaintingImage:
    def test_saves_png_and_returns_url(self, temp_dir: Path):
        url = save_painting_image(make_png("blue"), temp_dir, 7)

        assert url.startswith(f"{GALLERY_URL_PREFIX}/painting-7-")
        saved = temp_dir / url.rsplit("/", 1)[-1]
        with Image.open(saved) as image:
            assert image.format == "PNG"
            assert image.size == (8, 8)

    def test_jpeg_input_reencoded_as_png(self, temp_dir: Path):
        jpeg = _encode(Image.new("RGB", (4, 4), "green"), "JPEG")
        url = save_painting_image(jpeg, temp_dir, 1)
        with Image.open(temp_dir / url.rsplit("/", 1)[-1]) as image:
            assert image.format == "PNG"

    def test_palette_image_converted(self, temp_dir: Path):
        paletted = _encode(Image.new("P", (4, 4)), "PNG")
        url = save_painting_image(paletted, temp_dir, 1)
        with Image.open(temp_dir / url.rsplit("/", 1)[-1]) as image:
            assert image.mode in ("RGB", "RGBA")

    def test_each_attempt_gets_its_own_file(self, temp_dir: Path):
        first = save_painting_image(make_png(), temp_dir, 3)
        second = save_painting_image(make_png(), temp_dir, 3)
        assert first != second
        assert len(list(temp_dir.glob("painting-3-*.png"))) == 2

    def test_creates_missing_directory(self, temp_dir: Path):
        target = temp_dir / "new" / "gallery"
        save_painting_image(make_png(), target, 1)
        assert target.is_dir()

    def test_garbage_bytes_rejected(self, temp_dir: Path):
        with pytest.raises(UpstreamGenerationError):
            save_painting_image(b"definitely not an image", temp_dir, 1)
        assert list(temp_dir.iterdir()) == []
