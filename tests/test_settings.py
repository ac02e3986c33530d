from pathlib import Path

import pytest
from pydantic import ValidationError

from docucrawl.main import load_settings
from docucrawl.orchestrator.settings import CrawlerSettings, RuntimeConfig


def test_crawler_settings_accept_camel_case_payloads():
    settings = CrawlerSettings.model_validate(
        {"stayOnDomain": False, "stayOnPath": True, "excludeFileTypes": [".PNG", "pdf", "png"], "maxParallelScrapers": 5}
    )
    assert settings.stay_on_domain is False
    assert settings.stay_on_path is True
    assert settings.exclude_file_types == ("png", "pdf")
    assert settings.max_parallel_scrapers == 5


def test_crawler_settings_defaults_and_comma_lists():
    settings = CrawlerSettings(exclude_file_types="jpg, .GIF,,")
    assert settings.stay_on_domain is True
    assert settings.stay_on_path is False
    assert settings.exclude_file_types == ("jpg", "gif")
    assert settings.max_parallel_scrapers == 3
    assert CrawlerSettings.model_validate(settings.to_payload()) == settings


def test_max_parallel_must_be_positive():
    with pytest.raises(ValidationError):
        CrawlerSettings(max_parallel_scrapers=0)


def test_stale_threshold_must_exceed_fetch_timeout():
    with pytest.raises(ValidationError):
        RuntimeConfig(fetch_timeout_seconds=10, stale_after_seconds=10)


def test_runtime_defaults():
    config = RuntimeConfig()
    assert config.fetch_timeout_seconds == 7
    assert config.invocation_budget_seconds == 45
    assert config.stale_after_seconds == 60
    assert config.max_attempts == 3
    assert config.fetch_engine == "browser"


def test_runtime_config_from_settings_file(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text(
        """
[app]
database = "state/crawl.db"

[fetch]
engine = "http"
timeout_seconds = 3

[worker]
invocation_budget_seconds = 20
stale_after_seconds = 30
max_attempts = 0

[crawler]
stay_on_path = true
exclude_file_types = ["zip"]
max_parallel_scrapers = 2
""",
        encoding="utf-8",
    )
    config = RuntimeConfig.from_settings(load_settings(path))
    assert config.database == Path("state/crawl.db")
    assert config.fetch_engine == "http"
    assert config.fetch_timeout_seconds == 3
    assert config.invocation_budget_seconds == 20
    assert config.stale_after_seconds == 30
    assert config.max_attempts == 0
    assert config.crawler == CrawlerSettings(stay_on_path=True, exclude_file_types=["zip"], max_parallel_scrapers=2)


def test_missing_settings_file_means_defaults(tmp_path):
    assert load_settings(tmp_path / "absent.toml") == {}
    assert RuntimeConfig.from_settings({}) == RuntimeConfig()


def test_unknown_engine_is_invalid():
    with pytest.raises(ValidationError):
        RuntimeConfig.from_settings({"fetch": {"engine": "curl"}})
