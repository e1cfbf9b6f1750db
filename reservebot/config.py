"""Process settings (environment) and the per-run task document (JSON/YAML)."""

from __future__ import annotations

import json
import os
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from reservebot.clock import parse_civil
from reservebot.errors import ConfigError
from reservebot.scheduler.models import TaskConfig

if TYPE_CHECKING:
    import zoneinfo


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """reservebot configuration. All values come from environment variables."""

    # Civil time
    timezone: str = Field(default="Asia/Tokyo")

    # Logging
    log_dir: Path = Field(default=Path("logs"))
    log_level: str = Field(default="INFO")
    production: bool = Field(default=False)

    # Status store
    status_db_path: Path = Field(default=Path("data/status.db"))

    # Browser automation (Playwright)
    browser_headless: bool = Field(default=False)
    browser_timeout_ms: int = Field(default=30000)
    browser_stealth: bool = Field(default=False)
    site_login_url: str = Field(
        default="https://member.cospa-wellness.co.jp/COSPAWELLNESSWebUser/Account/LogIn"
    )

    # Timing
    engage_lead_seconds: float = Field(default=1.0)
    backoff_seconds: float = Field(default=0.1)
    default_retry_budget_seconds: float = Field(default=60.0)
    default_max_attempts: int = Field(default=1_000_000)

    model_config = SettingsConfigDict(
        env_prefix="RESERVEBOT_", env_file=_env_file(), env_file_encoding="utf-8"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)


settings = Settings()


# -- Task document -------------------------------------------------------------


class LoginSection(BaseModel):
    id: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ReservationSection(BaseModel):
    """When to fire and how hard to try."""

    time: str
    flying_time: float = Field(default=0.0, ge=0)
    confirm_reservation: bool = False
    lead_minutes: float = Field(default=2.0, gt=0)
    retry_budget_seconds: float | None = Field(default=None, gt=0)
    max_attempts: int | None = Field(default=None, ge=1)


class StoreSection(BaseModel):
    selected_store_index: int = Field(ge=0)


class LessonSection(BaseModel):
    """CSS selectors for the lesson cell and the seat inside it."""

    date_selector: str = Field(min_length=1)
    location_selector: str = Field(min_length=1)


class TaskDocument(BaseModel):
    """The structured document supplied once at start."""

    profile: str = Field(default="test", min_length=1)
    reservation: ReservationSection
    login: LoginSection
    store: StoreSection
    lesson: LessonSection

    @field_validator("profile")
    @classmethod
    def _no_separator(cls, value: str) -> str:
        if "@" in value:
            msg = "profile must not contain '@'"
            raise ValueError(msg)
        return value

    def to_task_config(self, tz: zoneinfo.ZoneInfo) -> TaskConfig:
        """Build the immutable core configuration, parsing times in *tz*."""
        try:
            target = parse_civil(self.reservation.time, tz)
        except ValueError as exc:
            msg = f"reservation.time is not a valid timestamp: {self.reservation.time!r}"
            raise ConfigError(msg) from exc

        budget = self.reservation.retry_budget_seconds
        if budget is None:
            budget = settings.default_retry_budget_seconds
        max_attempts = self.reservation.max_attempts
        if max_attempts is None:
            max_attempts = settings.default_max_attempts

        return TaskConfig(
            task_id=self.profile,
            target_instant=target,
            lead_offset=timedelta(minutes=self.reservation.lead_minutes),
            flying_bias=timedelta(seconds=self.reservation.flying_time),
            confirm_final_step=self.reservation.confirm_reservation,
            retry_budget=timedelta(seconds=budget),
            max_attempts=max_attempts,
        )


def load_task_document(path: Path, profile: str | None = None) -> TaskDocument:
    """Read a JSON or YAML task document.

    A non-empty *profile* replaces the document's own profile before validation.

    Raises:
        ConfigError: If the file is unreadable, unparsable, or fails validation.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read task document {path}: {exc}"
        raise ConfigError(msg) from exc

    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(raw)
        else:
            data = json.loads(raw)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        msg = f"Cannot parse task document {path}: {exc}"
        raise ConfigError(msg) from exc

    if not isinstance(data, dict):
        msg = f"Task document {path} must be a mapping"
        raise ConfigError(msg)
    if profile:
        data["profile"] = profile

    try:
        return TaskDocument.model_validate(data)
    except ValidationError as exc:
        msg = f"Invalid task document {path}: {exc.error_count()} error(s)\n{exc}"
        raise ConfigError(msg) from exc
