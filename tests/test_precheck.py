"""Tests for fitai.services.precheck — pre-API input filtering."""

from __future__ import annotations

import base64

import pytest

from fitai.services.precheck import (
    MAX_LENGTHS,
    check_image,
    check_text,
    sanitize_input,
    sanitize_payload,
    to_image_url,
)

MB = 1024 * 1024


def _b64(size: int) -> str:
    return base64.b64encode(b"\xff" * size).decode()


# ---------------------------------------------------------------------------
# Empty / junk text
# ---------------------------------------------------------------------------


class TestCheckText:
    def test_normal_text_passes(self):
        assert check_text("2 eggs and toast").passed

    def test_empty_string(self):
        r = check_text("")
        assert not r.passed
        assert r.reason == "The description must not be empty."

    def test_none(self):
        assert not check_text(None).passed

    def test_whitespace_only(self):
        assert not check_text("   \n ").passed

    def test_only_emoji(self):
        assert not check_text("🍕🍔🥗").passed

    def test_only_punctuation(self):
        assert not check_text("?!...").passed

    def test_field_name_in_reason(self):
        r = check_text("", "user_goal")
        assert r.reason == "The user goal must not be empty."


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------


class TestSanitize:
    def test_truncates_per_field(self):
        assert len(sanitize_input("x" * 2000, "description")) == MAX_LENGTHS["description"]
        assert len(sanitize_input("x" * 2000, "user_goal")) == 50

    def test_unknown_field_uses_default(self):
        assert len(sanitize_input("x" * 2000, "whatever")) == MAX_LENGTHS["default"]

    def test_strips_control_characters(self):
        assert sanitize_input("egg\x00s\x07 and\ttoast") == "eggs and\ttoast"

    def test_collapses_blank_lines(self):
        assert sanitize_input("a\n\n\n\n\nb") == "a\n\nb"

    def test_payload_recurses_with_key_limits(self):
        payload = {"goal": "g" * 100, "notes": ["a\x00b", {"title": "t" * 300}], "count": 3}
        cleaned = sanitize_payload(payload)
        assert len(cleaned["goal"]) == 50
        assert cleaned["notes"][0] == "ab"
        assert len(cleaned["notes"][1]["title"]) == 200
        assert cleaned["count"] == 3

    def test_payload_depth_bounded(self):
        deep: object = "x\x00"
        for _ in range(8):
            deep = [deep]
        cleaned = sanitize_payload(deep)
        for _ in range(8):
            cleaned = cleaned[0]
        assert cleaned == "x\x00"


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


class TestCheckImage:
    def test_data_url_passes(self):
        assert check_image(f"data:image/png;base64,{_b64(1000)}", 2 * MB).passed

    def test_raw_base64_passes(self):
        assert check_image(_b64(1000), 2 * MB).passed

    def test_https_url_passes(self):
        assert check_image("https://example.com/meal.jpg", 2 * MB).passed

    def test_http_url_rejected(self):
        r = check_image("http://example.com/meal.jpg", 2 * MB)
        assert not r.passed
        assert r.reason == "Image must be a base64 data URL or an https URL."

    def test_non_image_data_url_rejected(self):
        assert not check_image(f"data:text/plain;base64,{_b64(10)}", 2 * MB).passed

    @pytest.mark.parametrize("image", [None, "", "   "])
    def test_missing(self, image):
        r = check_image(image, 2 * MB)
        assert not r.passed
        assert r.reason == "An image is required."

    def test_too_large(self):
        r = check_image(_b64(3 * MB), 2 * MB)
        assert not r.passed
        assert r.reason == "Image is too large. Maximum size is ~2MB."

    def test_at_limit_passes(self):
        assert check_image(_b64(2 * MB - 3), 2 * MB).passed


class TestToImageUrl:
    def test_raw_base64_wrapped(self):
        assert to_image_url("QUJD") == "data:image/jpeg;base64,QUJD"

    def test_data_url_unchanged(self):
        assert to_image_url(" data:image/png;base64,QUJD ") == "data:image/png;base64,QUJD"

    def test_https_unchanged(self):
        assert to_image_url("https://example.com/a.png") == "https://example.com/a.png"
