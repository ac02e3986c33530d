"""Validated configuration for crawl jobs and the worker runtime."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class CrawlerSettings(BaseModel):
    """Per-job scope and concurrency settings, fixed for the job's lifetime."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    stay_on_domain: bool = Field(default=True, alias="stayOnDomain")
    stay_on_path: bool = Field(default=False, alias="stayOnPath")
    exclude_file_types: Tuple[str, ...] = Field(default=(), alias="excludeFileTypes")
    max_parallel_scrapers: int = Field(default=3, ge=1, alias="maxParallelScrapers")

    @field_validator("exclude_file_types", mode="before")
    @classmethod
    def _normalise_extensions(cls, value: str | Iterable[str] | None) -> Tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            value = value.split(",")
        cleaned = []
        for item in value:
            ext = str(item).strip().lower().lstrip(".")
            if ext and ext not in cleaned:
                cleaned.append(ext)
        return tuple(cleaned)

    def to_payload(self) -> Dict[str, object]:
        """Serialise using the snake_case field names for storage."""
        payload = self.model_dump()
        payload["exclude_file_types"] = list(self.exclude_file_types)
        return payload


class RuntimeConfig(BaseModel):
    """Process-level settings passed explicitly to the store, fetcher and workers."""

    database: Path = Path("data/docucrawl.db")
    fetch_engine: Literal["browser", "http"] = "browser"
    user_agent: str = DEFAULT_USER_AGENT
    fetch_timeout_seconds: float = Field(default=7.0, gt=0)
    invocation_budget_seconds: float = Field(default=45.0, gt=0)
    stale_after_seconds: float = Field(default=60.0, gt=0)
    max_attempts: int = Field(default=3, ge=0)
    crawler: CrawlerSettings = Field(default_factory=CrawlerSettings)

    @model_validator(mode="after")
    def _check_stale_threshold(self) -> "RuntimeConfig":
        # A slow fetch must never look abandoned.
        if self.stale_after_seconds <= self.fetch_timeout_seconds:
            raise ValueError("stale_after_seconds must exceed fetch_timeout_seconds")
        return self

    @classmethod
    def from_settings(cls, settings: Dict[str, object]) -> "RuntimeConfig":
        """Build the runtime config from the parsed TOML sections."""
        app_cfg = dict(settings.get("app", {}))
        fetch_cfg = dict(settings.get("fetch", {}))
        worker_cfg = dict(settings.get("worker", {}))
        payload: Dict[str, object] = {}
        if "database" in app_cfg:
            payload["database"] = app_cfg["database"]
        if "engine" in fetch_cfg:
            payload["fetch_engine"] = fetch_cfg["engine"]
        if "user_agent" in fetch_cfg:
            payload["user_agent"] = fetch_cfg["user_agent"]
        if "timeout_seconds" in fetch_cfg:
            payload["fetch_timeout_seconds"] = fetch_cfg["timeout_seconds"]
        for key in ("invocation_budget_seconds", "stale_after_seconds", "max_attempts"):
            if key in worker_cfg:
                payload[key] = worker_cfg[key]
        if "crawler" in settings:
            payload["crawler"] = CrawlerSettings.model_validate(settings["crawler"])
        return cls(**payload)
