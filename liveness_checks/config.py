"""Configuration loading and validation for the liveness monitor."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from liveness_checks.targets import Target, parse_target


DEFAULT_CONFIG_PATH = "/usr/local/etc/liveness-monitor.yml"
DEFAULT_TTL_SECONDS = 30000.0
DEFAULT_CHECK_FREQUENCY_SECONDS = 60.0
SUPPORTED_CONFIG_VERSIONS = (1,)


class ConfigError(ValueError):
    """Raised when the monitor configuration is missing or invalid."""


class MonitorSettings(BaseModel):
    """The ``config:`` section of the YAML file."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message_bird_token: str = Field(
        default="",
        validation_alias=AliasChoices("messageBirdToken", "messagebirdtoken", "message_bird_token"),
    )
    message_bird_sender: str = Field(
        default="",
        validation_alias=AliasChoices("messageBirdSender", "messagebirdsender", "message_bird_sender"),
    )
    recipients: str = Field(default="", validation_alias=AliasChoices("recipients"))
    default_ttl_seconds: float = Field(
        default=0.0,
        ge=0,
        validation_alias=AliasChoices(
            "defaultTTLSeconds", "defaultttlseconds", "default_ttl_seconds", "defaultTTL", "defaultttl"
        ),
    )
    server_nice_name: str = Field(
        default="",
        validation_alias=AliasChoices("serverNiceName", "servernicename", "server_nice_name"),
    )
    check_frequency_seconds: float = Field(
        default=0.0,
        ge=0,
        validation_alias=AliasChoices("checkFrequencySeconds", "checkfrequencyseconds", "check_frequency_seconds"),
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias=AliasChoices("httpTimeoutSeconds", "httptimeoutseconds", "http_timeout_seconds"),
    )
    tcp_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        validation_alias=AliasChoices("tcpTimeoutSeconds", "tcptimeoutseconds", "tcp_timeout_seconds"),
    )
    process_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias=AliasChoices("processTimeoutSeconds", "processtimeoutseconds", "process_timeout_seconds"),
    )

    @field_validator("message_bird_token", "message_bird_sender", "server_nice_name", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("recipients", mode="before")
    @classmethod
    def _coerce_recipients(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, (list, tuple)):
            return ",".join(str(x).strip() for x in value if str(x or "").strip())
        return str(value).strip()

    @field_validator("default_ttl_seconds", "check_frequency_seconds", mode="before")
    @classmethod
    def _none_is_zero(cls, value: Any) -> Any:
        return 0.0 if value is None else value

    @model_validator(mode="after")
    def _validate_required(self) -> "MonitorSettings":
        if self.message_bird_token:
            if not self.message_bird_sender:
                raise ValueError("MessageBird sender not set")
            if not self.recipients:
                raise ValueError("Recipients list is empty")
        if not self.server_nice_name:
            raise ValueError("serverNiceName empty")

        # Zero means "use the default" for both durations.
        if not self.default_ttl_seconds:
            self.default_ttl_seconds = DEFAULT_TTL_SECONDS
        if not self.check_frequency_seconds:
            self.check_frequency_seconds = DEFAULT_CHECK_FREQUENCY_SECONDS
        return self

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.message_bird_token)


class MonitorConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: int = 1
    processes: list[str] = Field(default_factory=list, validation_alias=AliasChoices("processes", "targets"))
    config: MonitorSettings

    @field_validator("version", mode="before")
    @classmethod
    def _default_version(cls, value: Any) -> Any:
        return 1 if value is None else value

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: int) -> int:
        if value not in SUPPORTED_CONFIG_VERSIONS:
            raise ValueError(f"unsupported config version {value}")
        return value

    @field_validator("processes", mode="before")
    @classmethod
    def _coerce_processes(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @model_validator(mode="before")
    @classmethod
    def _check_targets_first(cls, data: Any) -> Any:
        # Report a missing target list before complaining about the config section.
        if isinstance(data, dict):
            targets = data.get("processes", data.get("targets"))
            if not targets:
                raise ValueError("We need to monitor at least one process")
            data = {**data}
            if data.get("config") is None:
                data["config"] = {}
        return data

    @field_validator("processes")
    @classmethod
    def _check_targets(cls, value: list[str]) -> list[str]:
        cleaned: list[str] = []
        for idx, raw in enumerate(value):
            try:
                cleaned.append(parse_target(raw).raw)
            except ValueError as exc:
                raise ValueError(f"processes[{idx}]: {exc}") from None
        return cleaned

    def targets(self) -> list[Target]:
        return [parse_target(raw) for raw in self.processes]


def _format_validation_error(exc: ValidationError) -> str:
    parts: list[str] = []
    for err in exc.errors():
        msg = str(err.get("msg") or "")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        loc = ".".join(str(x) for x in err.get("loc") or ())
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def parse_config(data: Any) -> MonitorConfig:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Config YAML must be a mapping")
    try:
        return MonitorConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(_format_validation_error(exc)) from None


def load_config(path: Path | str) -> MonitorConfig:
    p = Path(path)
    try:
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {p}") from None
    except OSError as exc:
        raise ConfigError(f"Unable to read config file {p}: {exc}") from None
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {p}: {exc}") from None
    return parse_config(data)


def describe_config(config: MonitorConfig) -> dict[str, Any]:
    """Loggable summary with the MessageBird token redacted."""
    s = config.config
    return {
        "version": config.version,
        "processes": list(config.processes),
        "notifications_enabled": s.notifications_enabled,
        "message_bird_sender": s.message_bird_sender or None,
        "recipients": s.recipients or None,
        "default_ttl_seconds": s.default_ttl_seconds,
        "check_frequency_seconds": s.check_frequency_seconds,
        "server_nice_name": s.server_nice_name,
    }
