"""Tests for settings parsing and validation."""
import pytest
from pydantic import ValidationError

from rewards_backend.config import DEFAULT_SURVEY_GROUPS, Settings


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.default_language == "ru"
    assert settings.supported_languages == ["ru", "uz"]
    assert settings.survey_groups == DEFAULT_SURVEY_GROUPS
    assert settings.refresh_delay_seconds == pytest.approx(0.1)


def test_support_surfaces_are_locked_down_by_default(monkeypatch):
    monkeypatch.delenv("DIAGNOSTICS_ENABLED", raising=False)

    settings = Settings(_env_file=None)

    assert settings.diagnostics_enabled is False
    assert settings.tally_webhook_secret == ""
    assert settings.tally_signature_header == "X-Tally-Signature"


def test_supported_languages_from_environment(monkeypatch):
    monkeypatch.setenv("SUPPORTED_LANGUAGES", "RU, uz ,en,ru")

    settings = Settings(_env_file=None)

    assert settings.supported_languages == ["ru", "uz", "en"]
    assert settings.is_supported_language(" EN ")
    assert not settings.is_supported_language("de")
    assert not settings.is_supported_language(None)


def test_survey_groups_from_json_environment(monkeypatch):
    monkeypatch.setenv("SURVEY_GROUPS", '{"banks": {"name": "Banks", "surveys": ["a", "b"]}}')

    settings = Settings(_env_file=None)

    assert settings.survey_groups == {"banks": {"name": "Banks", "surveys": ["a", "b"]}}


def test_invalid_survey_groups_json():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, survey_groups="{not json")


@pytest.mark.parametrize(
    "overrides",
    [
        {"default_language": "en"},
        {"supported_languages": ""},
        {"probe_concurrency": 0},
        {"probe_timeout_seconds": 0},
        {"catalog_timeout_seconds": -1},
        {"refresh_delay_seconds": -0.5},
    ],
)
def test_invalid_tuning_is_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **overrides)


@pytest.mark.parametrize(
    "url,expected_driver",
    [
        ("postgres://user:pw@db.example.com:5432/rewards", "postgresql+asyncpg"),
        ("postgresql://user:pw@db.example.com:5432/rewards", "postgresql+asyncpg"),
        ("sqlite+aiosqlite:///./local.db", "sqlite+aiosqlite"),
    ],
)
def test_database_url_normalization(url, expected_driver):
    settings = Settings(_env_file=None, database_url=url)
    assert settings.database_url.startswith(f"{expected_driver}://")


def test_empty_database_url_falls_back_to_sqlite():
    settings = Settings(_env_file=None, database_url="")
    assert settings.database_url.startswith("sqlite+aiosqlite")
