"""
Base configuration system for the ecosystem monitor.

Features:
- Dataclass-based configuration with type hints
- YAML file loading with environment variable interpolation
- Probe definitions from YAML or the MONITOR_PROBES environment variable
- Fail-fast validation: any malformed record raises ConfigLoadError
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Type,
    TypeVar,
    Union,
    get_type_hints,
)

import yaml

from ecosystem_monitor.probes.models import ProbeDefinition
from ecosystem_monitor.probes.registry import (
    ProbeRegistry,
    RegistryValidationError,
    validate_definition,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="BaseConfig")

# Singleton config instance
_config_instance: Optional["MonitorConfig"] = None


class ConfigLoadError(Exception):
    """Raised when startup configuration is malformed. Fatal to startup."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(f"{source}: {message}" if source else message)
        self.source = source


def _interpolate_env_vars(value: Any) -> Any:
    """
    Recursively interpolate environment variables in config values.

    Supports formats:
    - ${VAR_NAME} - Required, raises if not set
    - ${VAR_NAME:-default} - Optional with default
    - ${VAR_NAME:?error message} - Required with custom error
    """
    if isinstance(value, str):
        pattern = r"\$\{([A-Z_][A-Z0-9_]*)(?:(:-)([^}]*))?(?:(:\?)([^}]*))?\}"

        def replace_var(match: re.Match) -> str:
            var_name = match.group(1)
            has_default = match.group(2) is not None
            default_value = match.group(3) or ""
            has_error = match.group(4) is not None
            error_msg = match.group(5) or f"Required environment variable {var_name} is not set"

            env_value = os.environ.get(var_name)

            if env_value is not None:
                return env_value
            elif has_default:
                return default_value
            elif has_error:
                raise ValueError(error_msg)
            else:
                raise ValueError(f"Environment variable {var_name} is not set")

        return re.sub(pattern, replace_var, value)

    elif isinstance(value, dict):
        return {k: _interpolate_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [_interpolate_env_vars(item) for item in value]

    return value


def _coerce_type(value: Any, target_type: Any) -> Any:
    """Coerce a value to the target type."""
    if value is None:
        return None

    origin = getattr(target_type, "__origin__", None)

    # Handle Optional types
    if origin is Union:
        non_none_types = [t for t in target_type.__args__ if t is not type(None)]
        if len(non_none_types) == 1:
            return _coerce_type(value, non_none_types[0])
        return value

    if target_type is Path:
        return Path(value).expanduser() if value else None

    # Handle List
    if origin is list:
        item_type = target_type.__args__[0] if target_type.__args__ else str
        if isinstance(value, str):
            value = [v.strip() for v in value.split(",") if v.strip()]
        if not isinstance(value, list):
            value = [value]
        return [_coerce_type(item, item_type) for item in value]

    # Handle bool (special case because bool("false") is True)
    if target_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes", "on")
        return bool(value)

    # Numeric types raise ValueError on garbage; callers wrap it
    if target_type is int:
        return int(float(value))
    if target_type is float:
        return float(value)
    if target_type is str:
        return str(value)

    return value


@dataclass
class BaseConfig:
    """
    Base configuration class with YAML loading and env var interpolation.
    """

    @classmethod
    def from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
        """Create config from dictionary with env var interpolation."""
        interpolated = _interpolate_env_vars(data)

        field_types = get_type_hints(cls)
        filtered = {}
        for key, value in interpolated.items():
            if key in cls.__dataclass_fields__:
                filtered[key] = _coerce_type(value, field_types[key])
            else:
                logger.warning(f"[Config] Ignoring unknown {cls.__name__} key: {key}")

        return cls(**filtered)

    @classmethod
    def from_yaml(cls: Type[T], path: Union[str, Path]) -> T:
        """Load config from YAML file with env var interpolation."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_env(cls: Type[T], prefix: str = "") -> T:
        """Create config entirely from environment variables."""
        data = {}

        for field_info in cls.__dataclass_fields__.values():
            env_key = f"{prefix}{field_info.name}".upper()
            env_value = os.environ.get(env_key)

            if env_value is not None:
                data[field_info.name] = env_value

        return cls.from_dict(data) if data else cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        result = {}
        for field_info in fields(self):
            value = getattr(self, field_info.name)
            if isinstance(value, Path):
                result[field_info.name] = str(value)
            elif isinstance(value, (list, dict)):
                result[field_info.name] = copy.copy(value)
            else:
                result[field_info.name] = value
        return result

    def merge(self: T, other: Dict[str, Any]) -> T:
        """Create new config with overrides merged in."""
        current = self.to_dict()
        current.update(_interpolate_env_vars(other))
        return self.__class__.from_dict(current)


def _optional_float_env(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


@dataclass
class MonitorConfig(BaseConfig):
    """Monitor process settings (the `monitor:` section of the YAML file)."""

    # Cycle cadence; None means "shortest probe interval"
    check_interval_seconds: Optional[float] = field(
        default_factory=lambda: _optional_float_env("MONITOR_CHECK_INTERVAL")
    )
    default_timeout_ms: int = field(
        default_factory=lambda: int(os.getenv("MONITOR_DEFAULT_TIMEOUT_MS", "10000"))
    )
    default_interval_ms: int = field(
        default_factory=lambda: int(os.getenv("MONITOR_DEFAULT_INTERVAL_MS", "30000"))
    )

    # Retention
    history_capacity: int = field(
        default_factory=lambda: int(os.getenv("MONITOR_HISTORY_CAPACITY", "100"))
    )
    alert_history_size: int = field(
        default_factory=lambda: int(os.getenv("MONITOR_ALERT_HISTORY", "50"))
    )

    # Alert relays
    webhook_urls: List[str] = field(
        default_factory=lambda: [
            u.strip() for u in os.getenv("MONITOR_WEBHOOK_URLS", "").split(",") if u.strip()
        ]
    )
    webhook_timeout_seconds: float = 10.0

    # API server
    host: str = field(default_factory=lambda: os.getenv("MONITOR_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("MONITOR_PORT", "8005")))
    ws_max_connections: int = field(
        default_factory=lambda: int(os.getenv("MONITOR_WS_MAX_CONN", "100"))
    )

    # Probe definitions (validated, registration order)
    probes: List[ProbeDefinition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitorConfig":
        data = dict(data)
        probes = data.pop("probes", [])
        config = super().from_dict(data)
        config.probes = [
            p if isinstance(p, ProbeDefinition) else ProbeDefinition.from_dict(p)
            for p in probes
        ]
        return config

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["probes"] = [p.to_dict() for p in self.probes]
        return result

    def probe_defaults(self) -> Dict[str, Any]:
        return {
            "timeout_ms": self.default_timeout_ms,
            "interval_ms": self.default_interval_ms,
        }

    def validate(self) -> None:
        """Raise ConfigLoadError on out-of-range settings."""
        if self.check_interval_seconds is not None and self.check_interval_seconds <= 0:
            raise ConfigLoadError("check_interval_seconds must be > 0")
        if self.default_timeout_ms <= 0:
            raise ConfigLoadError("default_timeout_ms must be > 0")
        if self.default_interval_ms <= 0:
            raise ConfigLoadError("default_interval_ms must be > 0")
        if self.history_capacity < 1:
            raise ConfigLoadError("history_capacity must be >= 1")
        if self.alert_history_size < 1:
            raise ConfigLoadError("alert_history_size must be >= 1")
        if not 0 < self.port < 65536:
            raise ConfigLoadError(f"port out of range: {self.port}")


def parse_probe_definitions(
    records: Any,
    defaults: Optional[Dict[str, Any]] = None,
    source: str = "probes",
) -> List[ProbeDefinition]:
    """
    Validate probe records into definitions.

    Raises:
        ConfigLoadError: on the first malformed or duplicate record.
    """
    if records is None:
        return []
    if not isinstance(records, list):
        raise ConfigLoadError("probe list must be a sequence of records", source)

    definitions: List[ProbeDefinition] = []
    seen = set()

    for index, record in enumerate(records):
        where = f"{source}[{index}]"
        try:
            definition = ProbeDefinition.from_dict(_interpolate_env_vars(record), defaults)
            validate_definition(definition)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            # RegistryValidationError is a ValueError
            raise ConfigLoadError(str(e), where) from e

        if definition.id in seen:
            raise ConfigLoadError(f"duplicate probe id '{definition.id}'", where)
        seen.add(definition.id)
        definitions.append(definition)

    return definitions


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigLoadError("config file not found", str(path))

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"invalid YAML: {e}", str(path)) from e

    if not isinstance(data, dict):
        raise ConfigLoadError("top level must be a mapping", str(path))
    return data


def load_config(
    path: Optional[Union[str, Path]] = None,
    reload: bool = False,
) -> MonitorConfig:
    """
    Load or get cached configuration.

    Sources, in order:
        1. YAML file at `path` or $MONITOR_CONFIG (`monitor:`, `defaults:`,
           `probes:` sections)
        2. A JSON list of probe records in $MONITOR_PROBES, appended

    Raises:
        ConfigLoadError: on any malformed input.
    """
    global _config_instance

    if _config_instance is not None and not reload:
        return _config_instance

    path = path or os.getenv("MONITOR_CONFIG")
    data: Dict[str, Any] = _read_yaml(Path(path).expanduser()) if path else {}
    source = str(path) if path else "environment"

    try:
        monitor_section = data.get("monitor") or {}
        if not isinstance(monitor_section, dict):
            raise ConfigLoadError("'monitor' section must be a mapping", source)
        config = MonitorConfig.from_dict(monitor_section)
    except (TypeError, ValueError) as e:
        raise ConfigLoadError(f"invalid monitor settings: {e}", source) from e

    config.validate()

    defaults = config.probe_defaults()
    extra_defaults = data.get("defaults") or {}
    if not isinstance(extra_defaults, dict):
        raise ConfigLoadError("'defaults' section must be a mapping", source)
    defaults.update(extra_defaults)

    probes = parse_probe_definitions(data.get("probes"), defaults, source=f"{source}:probes")

    env_probes = os.getenv("MONITOR_PROBES")
    if env_probes:
        try:
            records = json.loads(env_probes)
        except json.JSONDecodeError as e:
            raise ConfigLoadError(f"invalid JSON: {e}", "MONITOR_PROBES") from e
        probes.extend(parse_probe_definitions(records, defaults, source="MONITOR_PROBES"))

    ids = [p.id for p in probes]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ConfigLoadError(f"duplicate probe ids: {', '.join(duplicates)}", source)

    config.probes = probes
    _config_instance = config

    logger.info(f"[Config] Loaded {len(probes)} probe(s) from {source}")
    return config


def get_config() -> Optional[MonitorConfig]:
    """Get cached config. Returns None if not loaded."""
    return _config_instance


def build_registry(
    config: MonitorConfig,
    registry: Optional[ProbeRegistry] = None,
) -> ProbeRegistry:
    """
    Register the configured probes.

    Raises:
        ConfigLoadError: if a definition is rejected by the registry.
    """
    registry = registry if registry is not None else ProbeRegistry()
    try:
        registry.load(config.probes)
    except RegistryValidationError as e:
        raise ConfigLoadError(str(e), "registry") from e
    return registry
