"""
cfdns/config.py

Responsibility: Defines the immutable Configuration/Domain models and loads
them from a JSON or YAML file.
Does NOT: watch the file for changes, build API clients, or hold the
active configuration — see watcher.py and services/config_store.py.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

import tldextract
import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)

from cfdns.exceptions import ConfigLoadError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "cfdns.yaml"

# Timing values are in seconds
DEFAULT_FREQUENCY = 3600.0
MIN_FREQUENCY = 10.0
DEFAULT_TIMEOUT = 5.0
MIN_TIMEOUT = 1.0

DEFAULT_WORKERS = 10
MIN_WORKERS = 1
MAX_WORKERS = 50

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

# NOTE: suffix_list_urls=() keeps tldextract on its bundled public suffix
# snapshot, so validating a config never touches the network.
_extract = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=())


def parse_duration(value: Any) -> float:
    """
    Converts a config duration into seconds.

    Accepts plain numbers (seconds), numeric strings, or compound duration
    strings such as "90s", "5m", "1h30m" or "250ms".

    Args:
        value: The raw value from the config document.

    Returns:
        The duration in seconds.

    Raises:
        ValueError: If the value cannot be interpreted as a duration.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip().lower()
    try:
        return float(text)
    except ValueError:
        pass

    parts = _DURATION_PART.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"invalid duration: {value!r}")
    return sum(float(number) * _DURATION_UNITS[unit] for number, unit in parts)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class Domain(BaseModel):
    """
    One hostname to keep pointed at the public address.

    proxied is tri-state: None means "leave the remote record's proxy
    setting as it is".
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    hostname: str
    proxied: bool | None = None

    @field_validator("hostname")
    @classmethod
    def _fully_qualified(cls, value: str) -> str:
        hostname = value.strip().lower().rstrip(".")
        if not hostname:
            raise ValueError("hostname cannot be empty")
        ext = _extract(hostname)
        if not ext.domain or not ext.suffix:
            raise ValueError(f"hostname {hostname!r} is not a fully-qualified domain name")
        return hostname


class Configuration(BaseModel):
    """
    The complete, validated runtime configuration.

    Instances are immutable; a configuration change always produces a new
    instance that replaces the old one wholesale.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    zone_id: str
    token: SecretStr
    frequency: float = DEFAULT_FREQUENCY
    timeout: float = DEFAULT_TIMEOUT
    workers: int = DEFAULT_WORKERS
    verbose: bool = False
    ipv4: bool = False
    ipv6: bool = False
    domains: tuple[Domain, ...] = Field(min_length=1)

    @field_validator("ipv4", "ipv6", mode="before")
    @classmethod
    def _unset_family(cls, value: Any) -> Any:
        # An empty YAML key ("ipv6:") reads as None.
        return False if value is None else value

    @model_validator(mode="after")
    def _default_families(self) -> Configuration:
        # Runs on the coerced booleans, so "false", 0 or "no" count as off.
        if not self.ipv4 and not self.ipv6:
            logger.debug("Neither address family enabled; enabling IPv4 and IPv6.")
            # NOTE: the model is frozen; bypass __setattr__ while still validating.
            object.__setattr__(self, "ipv4", True)
            object.__setattr__(self, "ipv6", True)
        return self

    @field_validator("zone_id")
    @classmethod
    def _zone_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("zone id cannot be empty")
        return value

    @field_validator("token")
    @classmethod
    def _token_not_blank(cls, value: SecretStr) -> SecretStr:
        token = value.get_secret_value().strip()
        if not token:
            raise ValueError("token cannot be empty")
        return SecretStr(token)

    @field_validator("frequency", mode="before")
    @classmethod
    def _frequency(cls, value: Any) -> float:
        seconds = parse_duration(value) if value is not None else 0.0
        if seconds <= 0:
            return DEFAULT_FREQUENCY
        if seconds < MIN_FREQUENCY:
            logger.warning("Frequency %.1fs is below the minimum; using %.0fs.", seconds, MIN_FREQUENCY)
            return MIN_FREQUENCY
        return seconds

    @field_validator("timeout", mode="before")
    @classmethod
    def _timeout(cls, value: Any) -> float:
        seconds = parse_duration(value) if value is not None else DEFAULT_TIMEOUT
        if seconds < MIN_TIMEOUT:
            logger.warning("Timeout %.2fs is below the minimum; using %.0fs.", seconds, MIN_TIMEOUT)
            return MIN_TIMEOUT
        return seconds

    @field_validator("workers", mode="before")
    @classmethod
    def _clamp_workers(cls, value: Any) -> int:
        if value is None:
            return DEFAULT_WORKERS
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValueError(f"invalid worker count: {value!r}")
        return max(MIN_WORKERS, min(MAX_WORKERS, int(value)))

    def connection_key(self) -> tuple[str, str, int]:
        """Fields whose change requires a new API client and worker pool."""
        return (self.zone_id, self.token.get_secret_value(), self.workers)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_config(path: str | Path) -> Configuration:
    """
    Reads and validates a configuration file.

    The format is chosen by extension: .json for JSON, .yaml/.yml for YAML.

    Args:
        path: Location of the configuration file.

    Returns:
        A validated Configuration.

    Raises:
        ConfigLoadError: If the file cannot be read, has an unsupported
                         extension, cannot be parsed, or is invalid.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in (".json", ".yaml", ".yml"):
        raise ConfigLoadError(f"Unsupported config file extension: {suffix or '(none)'}")

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        if suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigLoadError(f"Could not parse config file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigLoadError(f"Config file {path} must contain a mapping at the top level.")

    try:
        config = Configuration.model_validate(data)
    except ValidationError as exc:
        raise ConfigLoadError(f"Invalid configuration in {path}: {exc}") from exc

    logger.debug(
        "Loaded %s: zone=%s domains=%d ipv4=%s ipv6=%s",
        path,
        config.zone_id,
        len(config.domains),
        config.ipv4,
        config.ipv6,
    )
    return config
