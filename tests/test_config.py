"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from listing_hub.config import Settings


@pytest.fixture
def settings() -> Settings:
    return Settings(database_path=":memory:")


class TestDefaults:
    def test_reconciliation_defaults(self, settings: Settings) -> None:
        assert settings.batch_size == 50
        assert settings.min_listing_price == 5000
        assert settings.listing_base_url == "https://lamudi.com.ph/"
        assert settings.dedup_match_title is False

    def test_api_key_optional(self, settings: Settings) -> None:
        assert settings.anthropic_api_key.get_secret_value() == ""

    def test_api_key_not_in_repr(self) -> None:
        s = Settings(anthropic_api_key="sk-secret")
        assert "sk-secret" not in repr(s)


class TestEnvironment:
    def test_reads_prefixed_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LISTING_HUB_BATCH_SIZE", "25")
        monkeypatch.setenv("LISTING_HUB_DEDUP_MATCH_TITLE", "true")
        s = Settings()
        assert s.batch_size == 25
        assert s.dedup_match_title is True

    @pytest.mark.parametrize(
        ("field", "value"),
        [("batch_size", 0), ("db_pool_size", 51), ("ai_concurrency", 0), ("queue_delay_seconds", -1)],
    )
    def test_out_of_range_rejected(self, field: str, value: int) -> None:
        with pytest.raises(ValidationError):
            Settings(**{field: value})


class TestGetBackoffSchedule:
    def test_default(self, settings: Settings) -> None:
        assert settings.get_backoff_schedule() == (1.0, 5.0, 10.0)

    def test_custom(self) -> None:
        s = Settings(queue_backoff_schedule=" 0.5, 2 ,,30 ")
        assert s.get_backoff_schedule() == (0.5, 2.0, 30.0)

    def test_empty_disables_retries(self) -> None:
        assert Settings(queue_backoff_schedule="").get_backoff_schedule() == ()


class TestGetCorsOrigins:
    def test_wildcard_default(self, settings: Settings) -> None:
        assert settings.get_cors_origins() == ["*"]

    def test_comma_separated(self) -> None:
        s = Settings(cors_origins="https://a.ph, https://b.ph,")
        assert s.get_cors_origins() == ["https://a.ph", "https://b.ph"]


def test_data_dir() -> None:
    assert Settings(database_path="data/sub/listings.db").data_dir == "data/sub"
