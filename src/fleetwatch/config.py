"""Typed settings loaded from the environment.

Every field can be set through a ``FLEETWATCH_``-prefixed variable, nested
blocks through ``__``:

    FLEETWATCH_SERVICE_NAME=monitoring
    FLEETWATCH_THRESHOLDS__CPU=75
    FLEETWATCH_SLACK__ENABLED=true
    FLEETWATCH_SLACK__WEBHOOK_URL=https://hooks.slack.com/services/...
    FLEETWATCH_EMAIL__RECIPIENTS='["ops@example.com"]'
"""

from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fleetwatch.core.errors import ConfigurationError
from fleetwatch.core.models import ServiceEndpoint, is_http_url


def _check_url(value: str | None) -> str | None:
    if value is None:
        return None
    if not is_http_url(value):
        raise ValueError(f"not an http(s) URL: {value!r}")
    return value


class IntervalSettings(BaseModel):
    """Periodic task intervals in seconds."""

    metrics: float = Field(default=30.0, gt=0)
    health: float = Field(default=60.0, gt=0)
    alerts: float = Field(default=60.0, gt=0)
    flush: float = Field(default=30.0, gt=0)


class ThresholdSettings(BaseModel):
    """Alert thresholds. A value strictly above a threshold is a breach."""

    cpu: float = 80.0
    memory: float = 85.0
    disk: float = 90.0
    error_rate: float = 10.0
    response_time: float = Field(default=5000.0, gt=0)  # milliseconds

    @field_validator("cpu", "memory", "disk", "error_rate")
    @classmethod
    def _percent(cls, value: float) -> float:
        if not 0 < value <= 100:
            raise ValueError("percent thresholds must be in (0, 100]")
        return value


class GatewaySettings(BaseModel):
    url: str = "http://localhost:3000"
    token: str | None = None

    @field_validator("url")
    @classmethod
    def _url(cls, value: str) -> str:
        return _check_url(value) or value


class EmailSettings(BaseModel):
    enabled: bool = False
    smtp_host: str | None = None
    smtp_port: int = 587
    username: str | None = None
    password: str | None = None
    sender: str | None = None
    recipients: list[str] = Field(default_factory=list)
    use_tls: bool = True

    @model_validator(mode="after")
    def _complete_when_enabled(self) -> "EmailSettings":
        if self.enabled:
            missing = [
                name
                for name in ("smtp_host", "sender", "recipients")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(f"email is enabled but missing: {', '.join(missing)}")
        return self


class SlackSettings(BaseModel):
    enabled: bool = False
    webhook_url: str | None = None

    @field_validator("webhook_url")
    @classmethod
    def _url(cls, value: str | None) -> str | None:
        return _check_url(value)

    @model_validator(mode="after")
    def _complete_when_enabled(self) -> "SlackSettings":
        if self.enabled and not self.webhook_url:
            raise ValueError("slack is enabled but webhook_url is missing")
        return self


class PagerDutySettings(BaseModel):
    enabled: bool = False
    integration_key: str | None = None

    @model_validator(mode="after")
    def _complete_when_enabled(self) -> "PagerDutySettings":
        if self.enabled and not self.integration_key:
            raise ValueError("pagerduty is enabled but integration_key is missing")
        return self


class EndpointSettings(BaseModel):
    name: str = Field(min_length=1)
    url: str
    port: int | None = None

    @field_validator("url")
    @classmethod
    def _url(cls, value: str) -> str:
        return _check_url(value) or value

    def to_endpoint(self) -> ServiceEndpoint:
        return ServiceEndpoint(name=self.name, url=self.url, port=self.port)


class Settings(BaseSettings):
    """Process-wide configuration for the monitor."""

    model_config = SettingsConfigDict(
        env_prefix="FLEETWATCH_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    service_name: str = "fleetwatch"
    service_version: str = "1.0.0"
    database_path: str = "fleetwatch.db"

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["text", "json"] = "text"

    intervals: IntervalSettings = Field(default_factory=IntervalSettings)
    thresholds: ThresholdSettings = Field(default_factory=ThresholdSettings)

    buffer_capacity: int = Field(default=100, gt=0)
    max_backlog: int | None = Field(default=None, gt=0)
    cpu_sample_window: float = Field(default=0.1, gt=0)
    evaluation_window: float = Field(default=300.0, gt=0)
    probe_timeout: float = Field(default=10.0, gt=0)
    notification_timeout: float = Field(default=10.0, gt=0)
    retention_days: int = Field(default=30, gt=0)
    shutdown_grace: float = Field(default=5.0, ge=0)

    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    registry_url: str | None = None
    services: list[EndpointSettings] = Field(default_factory=list)

    email: EmailSettings = Field(default_factory=EmailSettings)
    slack: SlackSettings = Field(default_factory=SlackSettings)
    pagerduty: PagerDutySettings = Field(default_factory=PagerDutySettings)

    @field_validator("registry_url")
    @classmethod
    def _registry_url(cls, value: str | None) -> str | None:
        return _check_url(value)

    @model_validator(mode="after")
    def _backlog_holds_a_batch(self) -> "Settings":
        if self.max_backlog is not None and self.max_backlog < self.buffer_capacity:
            raise ValueError("max_backlog must be at least buffer_capacity")
        return self


def load_settings(**overrides: Any) -> Settings:
    """Read settings from the environment, applying explicit overrides.

    Raises:
        ConfigurationError: A setting is missing or invalid.
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"invalid configuration:\n{e}") from e
