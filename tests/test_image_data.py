"""Tests for image reference helpers."""

import asyncio
import base64

import pytest

from modules.image_data import load_image, parse_data_url, to_data_url, verify_image_bytes


class TestDataUrls:

    def test_parse_keeps_mime_type(self, png_bytes):
        mime_type, data = parse_data_url(to_data_url(png_bytes, "image/png"))
        assert mime_type == "image/png"
        assert data == png_bytes

    def test_parse_defaults_mime_type(self):
        mime_type, data = parse_data_url("data:;base64," + base64.b64encode(b"abc").decode())
        assert mime_type == "image/jpeg"
        assert data == b"abc"

    @pytest.mark.parametrize("url", [
        "https://images.example.com/a.jpg",
        "data:image/png;base64",
        "data:image/png,plain-text",
        "data:image/png;base64,@@not-base64@@",
    ])
    def test_parse_rejects_malformed(self, url):
        with pytest.raises(ValueError):
            parse_data_url(url)

    def test_load_image_from_data_url(self, png_bytes):
        mime_type, data = asyncio.run(load_image(to_data_url(png_bytes, "image/png")))
        assert (mime_type, data) == ("image/png", png_bytes)

    def test_load_image_rejects_unknown_scheme(self):
        with pytest.raises(ValueError):
            asyncio.run(load_image("ftp://images.example.com/a.jpg"))


class TestVerifyImage:

    def test_valid_png(self, png_bytes):
        assert verify_image_bytes(png_bytes) == "PNG"

    def test_text_is_not_an_image(self):
        with pytest.raises(ValueError):
            verify_image_bytes(b"just some text, not pixels")
