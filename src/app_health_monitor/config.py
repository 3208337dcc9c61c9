"""Configuration management for App Health Monitor."""

import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import jsonschema
from jsonschema.exceptions import best_match
import yaml

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_INTERVAL_SECONDS = 5
DEFAULT_NUMBER_OF_PROBES = 1
MAX_PROBE_TIMEOUT_SECONDS = 30.0
PROBE_TIMEOUT_RATIO = 0.8  # of the interval, when no timeout is configured

SEQUENCE_NUMBER_ENV = "ConfigSequenceNumber"
HANDLER_ENVIRONMENT_FILE = "HandlerEnvironment.json"


class ConfigError(Exception):
    """Configuration cannot be used to start health polling."""


class Protocol(str, Enum):
    """Supported probe protocols."""
    
    TCP = "tcp"
    HTTP = "http"
    HTTPS = "https"


# Refer to http://json-schema.org/ on how to use JSON Schemas.
PUBLIC_SETTINGS_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-04/schema#",
    "title": "Application Health - Public Settings",
    "type": "object",
    "properties": {
        "protocol": {
            "description": "Required - can be 'tcp', 'http', or 'https'.",
            "type": "string",
            "enum": ["tcp", "http", "https"],
        },
        "port": {
            "description": "Required when the protocol is 'tcp'. Optional when the protocol is 'http' or 'https'.",
            "type": "integer",
            "minimum": 1,
            "maximum": 65535,
        },
        "requestPath": {
            "description": "Path on which the web request should be sent. Required when the protocol is 'http' or 'https'.",
            "type": "string",
        },
        "intervalInSeconds": {
            "description": "Interval in seconds between two consecutive probes.",
            "type": "integer",
            "minimum": 5,
            "maximum": 60,
        },
        "numberOfProbes": {
            "description": "Consecutive unhealthy probes required before the application is reported unhealthy.",
            "type": "integer",
            "minimum": 1,
            "maximum": 24,
        },
    },
    "required": ["protocol"],
    "additionalProperties": False,
}

PROTECTED_SETTINGS_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-04/schema#",
    "title": "Application Health - Protected Settings",
    "type": "object",
    "properties": {},
    "additionalProperties": False,
}


def validate_settings_object(settings_type: str, schema: dict[str, Any], data: Any) -> None:
    """Validate a settings object against its JSON schema.
    
    A missing object is validated as an empty one. Only the most relevant
    schema violation is reported.
    
    Raises:
        ConfigError: If the object does not conform to the schema.
    """
    if data is None:
        data = {}
    
    validator = jsonschema.Draft4Validator(schema)
    error = best_match(validator.iter_errors(data))
    if error is not None:
        raise ConfigError(f"invalid {settings_type} settings JSON: {error.message}")


def validate_public_settings(data: Any) -> None:
    validate_settings_object("public", PUBLIC_SETTINGS_SCHEMA, data)


def validate_protected_settings(data: Any) -> None:
    validate_settings_object("protected", PROTECTED_SETTINGS_SCHEMA, data)


@dataclass(frozen=True)
class ProbeSettings:
    """Settings for probing the monitored application.
    
    Immutable for the lifetime of one running instance.
    """
    
    protocol: Protocol
    port: int | None = None
    request_path: str | None = None
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    number_of_probes: int = DEFAULT_NUMBER_OF_PROBES
    host: str = DEFAULT_HOST
    timeout_seconds: float | None = None
    
    def __post_init__(self) -> None:
        try:
            protocol = Protocol(self.protocol)
        except ValueError:
            raise ConfigError(f"unsupported protocol: {self.protocol!r}") from None
        object.__setattr__(self, "protocol", protocol)
    
    @property
    def probe_timeout(self) -> float:
        """Per-probe timeout in seconds."""
        if self.timeout_seconds is not None:
            return float(self.timeout_seconds)
        return min(MAX_PROBE_TIMEOUT_SECONDS, self.interval_seconds * PROBE_TIMEOUT_RATIO)
    
    @property
    def url(self) -> str:
        """Request URL for http and https probes."""
        netloc = self.host if self.port is None else f"{self.host}:{self.port}"
        path = (self.request_path or "").lstrip("/")
        return f"{self.protocol.value}://{netloc}/{path}"
    
    def validate(self) -> None:
        """Reject settings that cannot drive a probe.
        
        Raises:
            ConfigError: On a missing required field or an out-of-range value.
        """
        if self.protocol is Protocol.TCP and self.port is None:
            raise ConfigError("port is required for the tcp protocol")
        if self.protocol in (Protocol.HTTP, Protocol.HTTPS) and not self.request_path:
            raise ConfigError(f"requestPath is required for the {self.protocol.value} protocol")
        
        if self.port is not None:
            if isinstance(self.port, bool) or not isinstance(self.port, int):
                raise ConfigError(f"port must be an integer, got {self.port!r}")
            if not 1 <= self.port <= 65535:
                raise ConfigError(f"port out of range (1-65535): {self.port}")
        
        if not self.host or any(c.isspace() for c in self.host):
            raise ConfigError(f"malformed host: {self.host!r}")
        if isinstance(self.interval_seconds, bool) or not isinstance(self.interval_seconds, (int, float)):
            raise ConfigError(f"intervalInSeconds must be a number, got {self.interval_seconds!r}")
        if self.interval_seconds <= 0:
            raise ConfigError(f"intervalInSeconds must be positive, got {self.interval_seconds}")
        if isinstance(self.number_of_probes, bool) or not isinstance(self.number_of_probes, int):
            raise ConfigError(f"numberOfProbes must be an integer, got {self.number_of_probes!r}")
        if self.number_of_probes < 1:
            raise ConfigError(f"numberOfProbes must be at least 1, got {self.number_of_probes}")
        
        if self.timeout_seconds is not None and (
            isinstance(self.timeout_seconds, bool) or not isinstance(self.timeout_seconds, (int, float))
        ):
            raise ConfigError(f"timeoutSeconds must be a number, got {self.timeout_seconds!r}")
        timeout = self.probe_timeout
        if timeout <= 0:
            raise ConfigError(f"timeoutSeconds must be positive, got {timeout}")
        if timeout >= self.interval_seconds:
            raise ConfigError(
                f"probe timeout ({timeout}s) must be shorter than intervalInSeconds ({self.interval_seconds}s)"
            )
    
    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProbeSettings":
        """Create validated settings from a public-settings style dictionary."""
        if "protocol" not in data:
            raise ConfigError("protocol is required")
        
        settings = cls(
            protocol=data["protocol"],
            port=data.get("port"),
            request_path=data.get("requestPath"),
            interval_seconds=data.get("intervalInSeconds", DEFAULT_INTERVAL_SECONDS),
            number_of_probes=data.get("numberOfProbes", DEFAULT_NUMBER_OF_PROBES),
            host=data.get("host", DEFAULT_HOST),
            timeout_seconds=data.get("timeoutSeconds"),
        )
        settings.validate()
        return settings
    
    @classmethod
    def from_yaml(cls, path: str | Path) -> "ProbeSettings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        
        with open(path) as f:
            data = yaml.safe_load(f)
        
        if not isinstance(data, dict):
            raise ConfigError(f"Config file must contain a mapping: {path}")
        return cls.from_dict(data)
    
    def to_dict(self) -> dict[str, Any]:
        """Convert to a public-settings style dictionary."""
        data: dict[str, Any] = {"protocol": self.protocol.value}
        if self.port is not None:
            data["port"] = self.port
        if self.request_path is not None:
            data["requestPath"] = self.request_path
        data["intervalInSeconds"] = self.interval_seconds
        data["numberOfProbes"] = self.number_of_probes
        if self.host != DEFAULT_HOST:
            data["host"] = self.host
        if self.timeout_seconds is not None:
            data["timeoutSeconds"] = self.timeout_seconds
        return data
    
    def to_yaml(self, path: str | Path) -> None:
        """Save settings to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


@dataclass
class HandlerEnvironment:
    """Folders assigned to the extension by the host agent."""
    
    name: str
    version: str
    log_folder: Path
    config_folder: Path
    status_folder: Path
    heartbeat_file: Path | None = None
    
    @classmethod
    def from_file(cls, path: str | Path) -> "HandlerEnvironment":
        """Parse a HandlerEnvironment.json file.
        
        The file holds a JSON array with exactly one entry.
        """
        path = Path(path)
        try:
            with open(path) as f:
                data = json.load(f)
        except OSError as e:
            raise ConfigError(f"failed to read handler environment: {e}") from e
        except ValueError as e:
            raise ConfigError(f"failed to parse handler environment {path}: {e}") from e
        
        if not isinstance(data, list) or len(data) != 1:
            raise ConfigError(f"expected a single handler environment entry in {path}")
        
        entry = data[0]
        if not isinstance(entry, dict):
            raise ConfigError(f"handler environment entry in {path} must be an object")
        env = entry.get("handlerEnvironment") or {}
        if not isinstance(env, dict):
            raise ConfigError(f"handlerEnvironment in {path} must be an object")
        missing = [k for k in ("logFolder", "configFolder", "statusFolder") if not env.get(k)]
        if missing:
            raise ConfigError(f"handler environment is missing: {', '.join(missing)}")
        
        heartbeat = env.get("heartbeatFile")
        return cls(
            name=entry.get("name", ""),
            version=str(entry.get("version", "")),
            log_folder=Path(env["logFolder"]),
            config_folder=Path(env["configFolder"]),
            status_folder=Path(env["statusFolder"]),
            heartbeat_file=Path(heartbeat) if heartbeat else None,
        )


def find_sequence_number(config_folder: str | Path) -> int:
    """Get the sequence number of the settings to act on.
    
    The host agent exports it in the environment; otherwise the newest
    ``<N>.settings`` file in the config folder wins.
    """
    value = os.environ.get(SEQUENCE_NUMBER_ENV)
    if value:
        try:
            return int(value)
        except ValueError:
            raise ConfigError(f"{SEQUENCE_NUMBER_ENV} is not a number: {value!r}") from None
    
    numbers = [
        int(p.stem)
        for p in Path(config_folder).glob("*.settings")
        if p.stem.isdigit()
    ]
    if not numbers:
        raise ConfigError(f"no settings files found in {config_folder}")
    return max(numbers)


def load_handler_settings(config_folder: str | Path, seq_num: int) -> ProbeSettings:
    """Read, schema-validate and parse ``<seq_num>.settings``."""
    path = Path(config_folder) / f"{seq_num}.settings"
    try:
        with open(path) as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"failed to read settings file: {e}") from e
    except ValueError as e:
        raise ConfigError(f"failed to parse settings file {path}: {e}") from e
    
    runtime_settings = data.get("runtimeSettings") if isinstance(data, dict) else None
    if not isinstance(runtime_settings, list) or len(runtime_settings) != 1:
        raise ConfigError(f"expected a single runtimeSettings entry in {path}")
    
    entry = runtime_settings[0]
    if not isinstance(entry, dict):
        raise ConfigError(f"runtimeSettings entry in {path} must be an object")
    handler_settings = entry.get("handlerSettings") or {}
    if not isinstance(handler_settings, dict):
        raise ConfigError(f"handlerSettings in {path} must be an object")
    public = handler_settings.get("publicSettings") or {}
    protected = handler_settings.get("protectedSettings")
    
    validate_public_settings(public)
    if isinstance(protected, dict):
        validate_protected_settings(protected)
    elif protected:
        # Encrypted blob; the protected schema admits no properties anyway.
        logger.warning("Ignoring encrypted protected settings")
    
    logger.info(f"Loaded settings for sequence number {seq_num}")
    return ProbeSettings.from_dict(public)


def create_example_config() -> ProbeSettings:
    """Create an example configuration for documentation."""
    return ProbeSettings(
        protocol=Protocol.HTTP,
        port=8080,
        request_path="/health",
        interval_seconds=5,
        number_of_probes=3,
    )
