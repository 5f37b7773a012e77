"""Configuration management for the Heliospectra fixture control agent."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .errors import ConfigError

DEFAULT_TELEGRAF_HOST = "telegraf:8092"
DEFAULT_UDP_PORT = 8092

SUPPORTED_TRANSPORTS = {"http", "telnet", "sim"}

HTTP_MEASUREMENT = "heliospectra2"
TELNET_MEASUREMENT = "heliospectra-light"


def parse_host_port(target: str, default_port: int = DEFAULT_UDP_PORT) -> Tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``); a missing port falls back to *default_port*."""

    candidate = target.strip()
    if candidate.startswith("["):
        host, _, rest = candidate[1:].partition("]")
        port_text = rest.lstrip(":")
    elif candidate.count(":") == 1:
        host, port_text = candidate.split(":", 1)
    else:
        host, port_text = candidate, ""
    if not host:
        raise ValueError(f"no host in metrics target '{target}'")
    port = int(port_text) if port_text else default_port
    return host, port


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1"}
    return bool(value)


@dataclass(slots=True, frozen=True)
class DeviceConfig:
    """How to reach the fixture."""

    address: str = ""
    transport: str = "http"
    port: int = 23
    timeout_s: float = 30.0
    settle_s: float = 0.1
    command_gap_s: float = 0.2
    sim_channels: int = 7

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", (self.address or "").strip())
        object.__setattr__(self, "transport", (self.transport or "http").strip().lower())
        try:
            port = int(self.port)
        except (TypeError, ValueError):
            port = 23
        object.__setattr__(self, "port", port if port > 0 else 23)
        for name, fallback in (("timeout_s", 30.0), ("settle_s", 0.1), ("command_gap_s", 0.2)):
            try:
                value = float(getattr(self, name))
            except (TypeError, ValueError):
                value = fallback
            object.__setattr__(self, name, max(value, 0.0))

    def with_overrides(self, **changes: Any) -> "DeviceConfig":
        return replace(self, **changes)


@dataclass(slots=True, frozen=True)
class MetricsConfig:
    """Where and how status metrics are published."""

    enabled: bool = True
    telegraf_host: str = DEFAULT_TELEGRAF_HOST
    host_tag: str = ""
    group_tag: str = "nonspc"
    did_tag: str = ""
    measurement: Optional[str] = None
    max_attempts: int = 5
    retry_backoff_s: float = 0.2

    def __post_init__(self) -> None:
        object.__setattr__(self, "enabled", _coerce_bool(self.enabled))
        object.__setattr__(self, "telegraf_host", (self.telegraf_host or DEFAULT_TELEGRAF_HOST).strip())
        try:
            attempts = int(self.max_attempts)
        except (TypeError, ValueError):
            attempts = 5
        object.__setattr__(self, "max_attempts", max(attempts, 1))
        try:
            backoff = float(self.retry_backoff_s)
        except (TypeError, ValueError):
            backoff = 0.2
        object.__setattr__(self, "retry_backoff_s", max(backoff, 0.0))

    def with_overrides(self, **changes: Any) -> "MetricsConfig":
        return replace(self, **changes)


@dataclass(slots=True, frozen=True)
class ScheduleConfig:
    """Conditions file and control cadence."""

    conditions_path: Optional[Path] = None
    dummy: bool = False
    loop_first_day: bool = False
    interval_s: float = 600.0
    multiplier: float = 10.0
    read_retry_delay_s: float = 5.0
    retry_backoff_s: float = 10.0
    strict_channel_count: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.conditions_path, str):
            object.__setattr__(self, "conditions_path", Path(self.conditions_path) if self.conditions_path else None)
        object.__setattr__(self, "dummy", _coerce_bool(self.dummy))
        object.__setattr__(self, "loop_first_day", _coerce_bool(self.loop_first_day))
        object.__setattr__(self, "strict_channel_count", _coerce_bool(self.strict_channel_count))

    def with_overrides(self, **changes: Any) -> "ScheduleConfig":
        return replace(self, **changes)


@dataclass(slots=True, frozen=True)
class AgentConfig:
    """Top-level configuration bundle, built once at startup and never mutated."""

    device: DeviceConfig = field(default_factory=DeviceConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)

    @property
    def mode(self) -> str:
        """``schedule`` when a conditions file drives the fixture, ``metrics`` when only
        reporting, ``idle`` when there is nothing to do."""

        if self.schedule.conditions_path and not self.schedule.dummy:
            return "schedule"
        if self.metrics.enabled:
            return "metrics"
        return "idle"

    @property
    def measurement_name(self) -> str:
        if self.metrics.measurement:
            return self.metrics.measurement
        if self.device.transport == "telnet":
            return TELNET_MEASUREMENT
        return HTTP_MEASUREMENT

    def validate(self) -> "AgentConfig":
        """Raise :class:`ConfigError` if the agent cannot start with these settings."""

        if not self.metrics.enabled and self.schedule.dummy:
            raise ConfigError("dummy and no-metrics specified, nothing to do.")
        if self.device.transport not in SUPPORTED_TRANSPORTS:
            allowed = ", ".join(sorted(SUPPORTED_TRANSPORTS))
            raise ConfigError(f"transport must be one of {allowed}, got '{self.device.transport}'")
        if not self.device.address and self.device.transport != "sim":
            raise ConfigError("no device address given (positional argument or ADDRESS)")
        if self.schedule.interval_s < 0:
            raise ConfigError("interval must not be negative")
        if self.schedule.multiplier <= 0:
            raise ConfigError("multiplier must be greater than 0")
        if self.metrics.enabled:
            try:
                parse_host_port(self.metrics.telegraf_host)
            except ValueError as exc:
                raise ConfigError(f"invalid TELEGRAF_HOST '{self.metrics.telegraf_host}': {exc}") from exc
        return self

    def with_overrides(self, **changes: Any) -> "AgentConfig":
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AgentConfig":
        """Create a configuration instance from a nested dictionary."""

        def _section(name: str, factory: Any) -> Any:
            data = payload.get(name, {}) if payload else {}
            if isinstance(data, dict):
                try:
                    return factory(**data)
                except TypeError as exc:
                    raise ConfigError(f"invalid '{name}' section: {exc}") from exc
            raise ConfigError(f"Expected mapping for section '{name}', got {type(data).__name__}")

        return cls(
            device=_section("device", DeviceConfig),
            metrics=_section("metrics", MetricsConfig),
            schedule=_section("schedule", ScheduleConfig),
        )

    def to_dict(self) -> Dict[str, Any]:
        def _asdict(obj: Any) -> Dict[str, Any]:
            return {name: getattr(obj, name) for name in obj.__dataclass_fields__}  # type: ignore[attr-defined]

        schedule_payload = _asdict(self.schedule)
        schedule_payload["conditions_path"] = (
            str(self.schedule.conditions_path) if self.schedule.conditions_path else None
        )
        return {
            "device": _asdict(self.device),
            "metrics": _asdict(self.metrics),
            "schedule": schedule_payload,
        }


def load_config(path: Optional[Path]) -> AgentConfig:
    """Load configuration from *path* if provided, otherwise return defaults."""

    if path is None:
        return AgentConfig()
    resolved = path.expanduser()
    if not resolved.exists():
        raise ConfigError(f"Config file not found: {resolved}")
    payload: Dict[str, Any]
    suffix = resolved.suffix.lower()
    if suffix in {".json", ".jsn"}:
        payload = _load_json(resolved)
    elif suffix in {".toml", ".tml"}:
        payload = _load_toml(resolved)
    elif suffix in {".yaml", ".yml"}:
        payload = _load_yaml(resolved)
    else:
        raise ConfigError(f"Unsupported configuration format: {resolved.suffix}")
    return AgentConfig.from_dict(payload)


def _load_json(path: Path) -> Dict[str, Any]:
    import json

    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _load_toml(path: Path) -> Dict[str, Any]:
    import tomllib

    with path.open("rb") as handle:
        return tomllib.load(handle)


def _load_yaml(path: Path) -> Dict[str, Any]:
    import yaml

    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}
