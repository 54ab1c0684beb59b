"""Tests for Settings configuration model."""

from pathlib import Path

import pytest

from src.config import Settings


class TestGetAnniversary:
    def test_default_is_may_20(self):
        s = Settings()
        assert s.get_anniversary() == (5, 20)

    def test_custom_date(self):
        s = Settings(anniversary_month=12, anniversary_day=24)
        assert s.get_anniversary() == (12, 24)

    def test_month_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            Settings(anniversary_month=13)

    def test_impossible_day_rejected(self):
        with pytest.raises(ValueError, match="not a calendar date"):
            Settings(anniversary_month=2, anniversary_day=30)

    def test_leap_day_allowed(self):
        assert Settings(anniversary_month=2, anniversary_day=29).get_anniversary() == (2, 29)


class TestGetPublicBaseUrl:
    def test_strips_trailing_slash(self):
        s = Settings(public_base_url="https://example.com/")
        assert s.get_public_base_url() == "https://example.com"

    def test_unchanged_without_slash(self):
        s = Settings(public_base_url="https://example.com")
        assert s.get_public_base_url() == "https://example.com"


class TestDefaults:
    def test_default_backend(self):
        assert Settings().backend == "local"

    def test_default_bucket(self):
        assert Settings().memories_bucket == "memories"

    def test_bucket_limit_is_10_mib(self):
        assert Settings().bucket_size_limit == 10 * 1024 * 1024

    def test_upload_limit_is_5_mib(self):
        assert Settings().upload_max_bytes == 5 * 1024 * 1024

    def test_image_check_timeout(self):
        assert Settings().image_check_timeout == 5.0

    def test_slideshow_interval(self):
        assert Settings().slideshow_interval_ms == 5000

    def test_default_database_path(self):
        assert Settings().database_path == Path("data/anniversary.db")


class TestExtraForbidden:
    def test_unknown_env_var_raises(self):
        with pytest.raises(ValueError, match="extra_forbidden"):
            Settings(**{"nonexistent_field": "value"})
