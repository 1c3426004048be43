"""Configuration for the TCP port exporter.

Settings are layered, highest precedence first:

1. Environment variables (``PORT_EXPORTER_*``)
2. Command line flags
3. YAML configuration file
4. Defaults
"""

import argparse
import math
import os
import re
from pathlib import Path
from typing import Annotated, Any, Sequence

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .item import (
    DEFAULT_GROUP,
    DEFAULT_NETWORK,
    Item,
    ResourceError,
    is_valid_port,
    parse_resource,
    split_host_port,
)
from .engine import DEFAULT_RESOLVE_TIMEOUT_S
from .logging_config import LOG_LEVELS, LoggingConfig

logger = structlog.get_logger()

ENV_PREFIX = "PORT_EXPORTER_"

DEFAULT_LISTEN_ADDR = ":9407"
DEFAULT_METRICS_PATH = "/metrics"
DEFAULT_LOG_LEVEL = "info"
DEFAULT_CONNECTION_TIMEOUT_S = 0.5

# YAML file keys -> settings fields
FILE_KEYS: dict[str, str] = {
    "connectionTimeout": "connection_timeout",
    "resolveTimeout": "resolve_timeout",
    "logLevel": "log_level",
    "listenAddr": "listen_addr",
    "metricsPath": "metrics_path",
    "resources": "resources",
    "strictScheme": "strict_scheme",
    "maxConcurrentProbes": "max_concurrent_probes",
}

_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


class ConfigError(Exception):
    """Configuration could not be loaded or is invalid."""


def parse_duration(value: Any) -> float:
    """Convert a duration to seconds.

    Accepts numbers (seconds), numeric strings (seconds) and Go style
    duration strings such as ``500ms`` or ``1m30s``.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
        if not math.isfinite(seconds):
            raise ValueError(f"invalid duration: {value!r}")
        return seconds
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip()
    if re.fullmatch(r"\d+(?:\.\d*)?|\.\d+", text):
        return float(text)

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if not text or position != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


def parse_listen_address(listen_addr: str) -> tuple[str, int]:
    """Split a listen address such as ``:9407`` into host and port.

    An empty host means all interfaces.
    """
    try:
        host, port = split_host_port(listen_addr, allow_empty_host=True)
    except ResourceError as e:
        raise ConfigError(f"invalid listen address {listen_addr!r}: {e}") from e
    if not port.isdigit() or not is_valid_port(int(port)):
        raise ConfigError(f"invalid listen address {listen_addr!r}: bad port")
    return host or "0.0.0.0", int(port)


class ResourceEntry(BaseModel):
    """One configured resource before it is parsed into an Item."""

    model_config = ConfigDict(extra="ignore")

    addr: str
    group: str = DEFAULT_GROUP
    network: str | None = None
    alias: str = ""


def _entry(raw: Any, group: str | None = None) -> dict[str, Any]:
    if isinstance(raw, ResourceEntry):
        entry = raw.model_dump()
    elif isinstance(raw, str):
        alias, sep, addr = raw.partition("=")
        entry = {"addr": addr.strip(), "alias": alias.strip()} if sep else {"addr": raw.strip()}
    elif isinstance(raw, dict):
        entry = dict(raw)
        if isinstance(entry.get("addr"), str):
            entry["addr"] = entry["addr"].strip()
    else:
        raise ValueError(f"unsupported resource entry: {raw!r}")
    if group is not None:
        entry["group"] = group
    return entry


def normalise_resources(value: Any) -> list[dict[str, Any]]:
    """Flatten every supported resources shape into a list of entry dicts.

    Supported shapes:
        "host:1,alias=host:2"            (flags and environment)
        ["host:1", {"addr": "host:2"}]   (YAML list, group "all")
        {"web": ["host:1"], "db": [...]} (YAML mapping, group per key)
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [_entry(part) for part in value.split(",") if part.strip()]
    if isinstance(value, dict):
        entries: list[dict[str, Any]] = []
        for group, group_items in value.items():
            if group_items is None:
                continue
            if isinstance(group_items, (str, dict)):
                group_items = [group_items]
            entries.extend(_entry(raw, group=str(group)) for raw in group_items)
        return entries
    if isinstance(value, (list, tuple)):
        return [_entry(raw) for raw in value]
    raise ValueError(f"unsupported resources value: {value!r}")


class Settings(BaseSettings):
    """Exporter settings. Init kwargs carry the file and flag layers."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        extra="ignore",
    )

    connection_timeout: float = Field(
        default=DEFAULT_CONNECTION_TIMEOUT_S,
        gt=0,
        description="Per probe connection timeout in seconds",
    )
    resolve_timeout: float = Field(
        default=DEFAULT_RESOLVE_TIMEOUT_S,
        gt=0,
        description="Per item host resolution timeout in seconds",
    )
    log_level: str = Field(default=DEFAULT_LOG_LEVEL, description="Logging level")
    listen_addr: str = Field(default=DEFAULT_LISTEN_ADDR, description="Listen address")
    metrics_path: str = Field(default=DEFAULT_METRICS_PATH, description="Metrics path")
    resources: Annotated[list[ResourceEntry], NoDecode] = Field(
        default_factory=list, description="Resources to probe"
    )
    strict_scheme: bool = Field(
        default=False,
        description="Reject resources whose scheme cannot be parsed instead of using tcp",
    )
    max_concurrent_probes: int = Field(
        default=32, ge=1, description="Maximum resolutions and probes in flight"
    )
    config_file: str | None = Field(default=None, description="YAML configuration file")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (env_settings, init_settings)

    @field_validator("connection_timeout", "resolve_timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: Any) -> float:
        return parse_duration(value)

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().lower()
        if level not in LOG_LEVELS:
            raise ValueError(
                f"unknown log level {value!r}, expected one of {sorted(LOG_LEVELS)}"
            )
        return level

    @field_validator("metrics_path")
    @classmethod
    def _check_metrics_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("metrics path must start with '/'")
        return value

    @field_validator("resources", mode="before")
    @classmethod
    def _normalise_resources(cls, value: Any) -> list[dict[str, Any]]:
        return normalise_resources(value)

    @property
    def logging_config(self) -> LoggingConfig:
        """Logging configuration for the process entry point."""
        return LoggingConfig(level=self.log_level)


def build_arg_parser() -> argparse.ArgumentParser:
    """Command line flags. Unset flags stay None so lower layers show through."""
    parser = argparse.ArgumentParser(
        prog="port-exporter",
        description="Prometheus exporter reporting TCP reachability of endpoints",
    )
    parser.add_argument("--timeout", dest="connection_timeout", help="Connection timeout, e.g. 500ms")
    parser.add_argument("--resolve-timeout", dest="resolve_timeout", help="Host resolution timeout, e.g. 5s")
    parser.add_argument("--log-level", dest="log_level", help="Logging level")
    parser.add_argument("--web.listen-address", dest="listen_addr", help="Listen address")
    parser.add_argument("--web.telemetry-path", dest="metrics_path", help="Metrics path")
    parser.add_argument(
        "--resources",
        dest="resources",
        help="Comma separated resources, each [alias=][scheme://]host:port",
    )
    parser.add_argument("--config-file", dest="config_file", help="Configuration file in YAML format")
    parser.add_argument(
        "--strict-scheme",
        dest="strict_scheme",
        action="store_true",
        default=None,
        help="Reject resources with an unparseable scheme",
    )
    parser.add_argument(
        "--max-concurrent-probes",
        dest="max_concurrent_probes",
        type=int,
        help="Maximum resolutions and probes in flight",
    )
    return parser


def load_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML configuration file into settings field names."""
    try:
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in config file {path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"config file {path} must contain a mapping")

    values: dict[str, Any] = {}
    for key, value in raw.items():
        field_name = FILE_KEYS.get(key, key)
        if field_name not in Settings.model_fields or field_name == "config_file":
            logger.warning("config_key_ignored", key=key, file=str(path))
            continue
        values[field_name] = value
    return values


def load_settings(argv: Sequence[str] | None = None) -> Settings:
    """Assemble settings from defaults, file, flags and environment."""
    args = build_arg_parser().parse_args(argv)
    flags = {key: value for key, value in vars(args).items() if value is not None}

    config_file = os.environ.get(f"{ENV_PREFIX}CONFIG_FILE") or flags.get("config_file")
    values = load_file(config_file) if config_file else {}
    values.update(flags)

    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e


def build_items(settings: Settings) -> list[Item]:
    """Parse every configured resource, skipping the ones that fail."""
    items: list[Item] = []
    for entry in settings.resources:
        try:
            item = parse_resource(
                entry.addr,
                strict_scheme=settings.strict_scheme,
                default_network=entry.network or DEFAULT_NETWORK,
                group=entry.group,
                alias=entry.alias,
            )
        except ResourceError as e:
            logger.error(
                "resource_invalid",
                resource=entry.addr,
                group=entry.group,
                error=str(e),
                error_type=type(e).__name__,
            )
            continue
        if item in items:
            logger.warning("resource_duplicate", resource=item.resource, group=item.group)
            continue
        items.append(item)

    if not items:
        raise ConfigError("empty items list")
    return items


def load_config(argv: Sequence[str] | None = None) -> tuple[Settings, list[Item]]:
    """Load settings and the items to monitor."""
    settings = load_settings(argv)
    return settings, build_items(settings)
