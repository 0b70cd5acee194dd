"""
Unit tests for image acceptance and the error sentinel.
"""
import base64
import io

import pytest
from PIL import Image

from conftest import noise_png
from utils.image_utils import (
    is_error_sentinel,
    render_error_sentinel,
    to_data_url,
    validate_image_bytes,
)


class TestValidateImageBytes:
    """Accepted images are larger than the minimum and decodable."""

    def test_noise_png_accepted(self, png_bytes):
        validate_image_bytes(png_bytes, min_bytes=1000)

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            validate_image_bytes(b"")

    def test_too_small_rejected(self):
        with pytest.raises(ValueError, match="too small"):
            validate_image_bytes(b"x" * 1000, min_bytes=1000)

    def test_undecodable_rejected(self):
        with pytest.raises(ValueError, match="not decodable"):
            validate_image_bytes(b"\x00garbage" * 500, min_bytes=1000)


class TestErrorSentinel:
    """Failed frames are replaced with a visible, detectable error image."""

    def test_sentinel_is_detected(self):
        url = render_error_sentinel("2B", "quota exceeded")
        assert url.startswith("data:image/png;")
        assert is_error_sentinel(url)

    def test_sentinel_is_a_real_png(self):
        url = render_error_sentinel("1A", "timeout", aspect_ratio="9:16")
        payload = base64.b64decode(url.split(",", 1)[1])
        with Image.open(io.BytesIO(payload)) as img:
            assert img.size == (360, 640)

    def test_placeholder_service_is_detected(self):
        assert is_error_sentinel("https://placehold.co/1920x1080?text=Error")

    def test_normal_image_is_not_sentinel(self):
        assert not is_error_sentinel(to_data_url("image/png", noise_png()))
