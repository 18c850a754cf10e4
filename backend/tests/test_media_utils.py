"""
Tests for crop geometry and frame timestamp resolution.
"""

import pytest

from nodeflow.agents.media_utils import compute_crop_box, guess_image_mime, resolve_seek_time
from nodeflow.services.errors import ValidationError


class TestComputeCropBox:
    def test_percent_to_pixels(self):
        assert compute_crop_box(200, 100, 10, 10, 50, 50) == (20, 10, 100, 50)

    def test_full_image(self):
        assert compute_crop_box(640, 480, 0, 0, 100, 100) == (0, 0, 640, 480)

    def test_rounds_half_up(self):
        # 2.5 -> 3, 7.5 -> 8
        assert compute_crop_box(10, 10, 25, 25, 75, 75) == (3, 3, 7, 7)

    def test_trimmed_to_image_bounds(self):
        x, y, w, h = compute_crop_box(100, 100, 80, 80, 50, 50)
        assert (x, y) == (80, 80)
        assert x + w <= 100 and y + h <= 100

    def test_empty_area_rejected(self):
        with pytest.raises(ValidationError):
            compute_crop_box(100, 100, 0, 0, 0, 50)

    def test_bad_dimensions_rejected(self):
        with pytest.raises(ValidationError):
            compute_crop_box(0, 100, 0, 0, 100, 100)


class TestResolveSeekTime:
    def test_percentage_of_duration(self):
        assert resolve_seek_time("50%", 10.0) == "5.00"

    def test_percentage_two_decimals(self):
        assert resolve_seek_time("33%", 7.0) == "2.31"

    def test_seconds_pass_through(self):
        assert resolve_seek_time("12.5") == "12.5"
        assert resolve_seek_time("  3 ") == "3"

    def test_blank_is_zero(self):
        assert resolve_seek_time("") == "0"

    @pytest.mark.parametrize("timestamp", ["abc", "-1", "150%", "x%"])
    def test_invalid_timestamps(self, timestamp):
        with pytest.raises(ValidationError):
            resolve_seek_time(timestamp, 10.0)

    def test_percentage_needs_duration(self):
        with pytest.raises(ValidationError):
            resolve_seek_time("50%", None)


class TestGuessImageMime:
    def test_prefers_content_type(self):
        assert guess_image_mime("https://x/a.bin", "image/png") == "image/png"

    def test_falls_back_to_extension(self):
        assert guess_image_mime("https://x/a.png?sig=1", "application/octet-stream") == "image/png"

    def test_default_jpeg(self):
        assert guess_image_mime("https://x/blob", None) == "image/jpeg"
