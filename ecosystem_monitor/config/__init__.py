"""
Configuration module for the ecosystem monitor.

Provides:
- MonitorConfig: monitor/API settings with env var overrides
- YAML loading with ${VAR} interpolation
- Probe definition parsing with fail-fast validation
"""

from ecosystem_monitor.config.base_config import (
    BaseConfig,
    MonitorConfig,
    ConfigLoadError,
    parse_probe_definitions,
    load_config,
    get_config,
    build_registry,
)

__all__ = [
    "BaseConfig",
    "MonitorConfig",
    "ConfigLoadError",
    "parse_probe_definitions",
    "load_config",
    "get_config",
    "build_registry",
]
