"""
Configuration loading for KQL Console.

Supports loading configuration from JSON and YAML files. Every section has
defaults, so a configuration file is optional; the three startup
parameters (library root, default duration, row ceiling) override
whatever the file provides.
"""

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from kql_console.models import parse_duration


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


@dataclass
class LibraryConfig:
    """
    Query library layout.

    Attributes:
        root: Root folder of the query library.
        threat_hunting_dir: Category folder holding threat-hunting queries.
        resource_graph_dir: Category folder holding resource-inventory queries.
        resource_variant_dir: Per-category subfolder of resource-scoped queries.
        query_extension: Extension of workspace/threat-hunting query files.
        inventory_extension: Extension of resource-inventory query files.
    """

    root: Path = field(default_factory=lambda: Path("./queries"))
    threat_hunting_dir: str = "DefenderHunting"
    resource_graph_dir: str = "ResourceGraph"
    resource_variant_dir: str = "Resource"
    query_extension: str = ".kql"
    inventory_extension: str = ".arg"

    @property
    def reserved_dirs(self) -> tuple[str, str]:
        """Category names owned by the non-workspace backends."""
        return (self.threat_hunting_dir, self.resource_graph_dir)


@dataclass
class QueryDefaults:
    """
    Default settings for query execution.

    Attributes:
        duration: Default workspace query window (ISO-8601 duration).
        threat_hunting_duration: Default threat-hunting window.
        max_rows: Row ceiling for resource-inventory queries.
    """

    duration: str = "PT24H"
    threat_hunting_duration: str = "P30D"
    max_rows: int = 1000


@dataclass
class ThreatHuntingConfig:
    """
    Hosted threat-hunting API settings.

    Attributes:
        endpoint: URL that accepts {"Query", "Timespan"} POST bodies.
        scope: OAuth scope requested for the bearer token.
        timeout_seconds: HTTP request timeout.
    """

    endpoint: str = "https://graph.microsoft.com/v1.0/security/runHuntingQuery"
    scope: str = "https://graph.microsoft.com/.default"
    timeout_seconds: float = 120.0


@dataclass
class LoggingSettings:
    """
    Logging settings from the configuration file.

    Attributes:
        level: Log level name.
        format: "text" or "json".
        log_file: Optional JSON log file.
    """

    level: str = "INFO"
    format: str = "text"
    log_file: Path | None = None


@dataclass
class Config:
    """
    Complete application configuration.

    Attributes:
        library: Query library layout.
        query_defaults: Default durations and row ceiling.
        threat_hunting: Threat-hunting API settings.
        logging: Logging settings.
        output_dir: Directory for exported CSV files.
    """

    library: LibraryConfig = field(default_factory=LibraryConfig)
    query_defaults: QueryDefaults = field(default_factory=QueryDefaults)
    threat_hunting: ThreatHuntingConfig = field(default_factory=ThreatHuntingConfig)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    output_dir: Path = field(default_factory=lambda: Path("./output"))


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _validate_duration(value: str, field_name: str) -> None:
    """Validate that a string is a usable ISO-8601 duration."""
    try:
        parse_duration(value)
    except ValueError as e:
        raise ConfigError(f"Invalid {field_name}: {e}") from e


# Resource Graph refuses a larger ``top``.
MAX_ROWS_LIMIT = 1000


def _validate_max_rows(value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"Invalid max_rows: must be a positive integer, got {value!r}")
    if value > MAX_ROWS_LIMIT:
        raise ConfigError(f"Invalid max_rows: must be at most {MAX_ROWS_LIMIT}, got {value}")


def _string(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"Invalid {field_name}: must be a string, got {value!r}")
    return value


def _path(value: Any, field_name: str) -> Path:
    try:
        return Path(value)
    except TypeError as e:
        raise ConfigError(f"Invalid {field_name}: must be a path, got {value!r}") from e


def _positive_float(value: Any, field_name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid {field_name}: must be a number, got {value!r}") from e
    if isinstance(value, bool) or number <= 0:
        raise ConfigError(f"Invalid {field_name}: must be positive, got {value!r}")
    return number


def _validate_extension(value: str, field_name: str) -> None:
    _string(value, field_name)
    if not value.startswith(".") or len(value) < 2:
        raise ConfigError(f"Invalid {field_name}: must start with '.', got {value!r}")


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Configuration section '{name}' must be a mapping")
    return section


def _parse_config_dict(data: dict[str, Any]) -> Config:
    """
    Parse configuration dictionary into Config object.

    Args:
        data: Configuration dictionary.

    Returns:
        Parsed Config object.

    Raises:
        ConfigError: If a value is invalid.
    """
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    lib_data = _section(data, "library")
    library = LibraryConfig(
        root=_path(lib_data.get("root", "./queries"), "library root"),
        threat_hunting_dir=_string(
            lib_data.get("threat_hunting_dir", LibraryConfig.threat_hunting_dir), "threat_hunting_dir"
        ),
        resource_graph_dir=_string(
            lib_data.get("resource_graph_dir", LibraryConfig.resource_graph_dir), "resource_graph_dir"
        ),
        resource_variant_dir=_string(
            lib_data.get("resource_variant_dir", LibraryConfig.resource_variant_dir), "resource_variant_dir"
        ),
        query_extension=lib_data.get("query_extension", LibraryConfig.query_extension),
        inventory_extension=lib_data.get("inventory_extension", LibraryConfig.inventory_extension),
    )
    _validate_extension(library.query_extension, "query_extension")
    _validate_extension(library.inventory_extension, "inventory_extension")

    qd_data = _section(data, "query_defaults")
    query_defaults = QueryDefaults(
        duration=qd_data.get("duration", QueryDefaults.duration),
        threat_hunting_duration=qd_data.get(
            "threat_hunting_duration", QueryDefaults.threat_hunting_duration
        ),
        max_rows=qd_data.get("max_rows", QueryDefaults.max_rows),
    )
    _validate_duration(query_defaults.duration, "duration")
    _validate_duration(query_defaults.threat_hunting_duration, "threat_hunting_duration")
    _validate_max_rows(query_defaults.max_rows)

    th_data = _section(data, "threat_hunting")
    threat_hunting = ThreatHuntingConfig(
        endpoint=_string(th_data.get("endpoint", ThreatHuntingConfig.endpoint), "threat_hunting endpoint"),
        scope=_string(th_data.get("scope", ThreatHuntingConfig.scope), "threat_hunting scope"),
        timeout_seconds=_positive_float(
            th_data.get("timeout_seconds", ThreatHuntingConfig.timeout_seconds), "timeout_seconds"
        ),
    )
    if not threat_hunting.endpoint.startswith("https://"):
        raise ConfigError(
            f"Invalid threat_hunting endpoint: must use https, got {threat_hunting.endpoint!r}"
        )

    log_data = _section(data, "logging")
    log_file = log_data.get("log_file")
    logging_settings = LoggingSettings(
        level=str(log_data.get("level", LoggingSettings.level)).upper(),
        format=str(log_data.get("format", LoggingSettings.format)).lower(),
        log_file=_path(log_file, "log_file") if log_file else None,
    )
    if logging_settings.level not in _LOG_LEVELS:
        raise ConfigError(f"Invalid logging level: {logging_settings.level!r}")
    if logging_settings.format not in ("text", "json"):
        raise ConfigError(f"Invalid logging format: {logging_settings.format!r}")

    paths_data = _section(data, "paths")
    output_dir = _path(paths_data.get("output_dir", "./output"), "output_dir")

    return Config(
        library=library,
        query_defaults=query_defaults,
        threat_hunting=threat_hunting,
        logging=logging_settings,
        output_dir=output_dir,
    )


def load_config_from_json(path: str | Path) -> Config:
    """
    Load configuration from a JSON file.

    Raises:
        ConfigError: If file is missing or invalid.
    """
    path = Path(path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse JSON configuration: {e}")

    return _parse_config_dict(data)


def load_config_from_yaml(path: str | Path) -> Config:
    """
    Load configuration from a YAML file.

    An empty YAML document yields the default configuration.

    Raises:
        ConfigError: If file is missing or invalid.
    """
    path = Path(path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")

    return _parse_config_dict(data or {})


def load_config(path: str | Path | None = None) -> Config:
    """
    Load configuration from file, auto-detecting format by extension.

    Supports:
        - .json: JSON format
        - .yaml, .yml: YAML format

    Args:
        path: Path to configuration file. None returns the defaults.

    Returns:
        Parsed Config object.

    Raises:
        ConfigError: If file format is unsupported or file is invalid.
    """
    if path is None:
        return Config()

    path = Path(path)
    suffix = path.suffix.lower()

    if suffix == ".json":
        return load_config_from_json(path)
    elif suffix in (".yaml", ".yml"):
        return load_config_from_yaml(path)
    else:
        raise ConfigError(
            f"Unsupported configuration format: {suffix}. "
            "Use .json, .yaml, or .yml"
        )


def apply_overrides(
    config: Config,
    library_root: Path | None = None,
    duration: str | None = None,
    max_rows: int | None = None,
) -> Config:
    """
    Apply startup-parameter overrides to a loaded configuration.

    Args:
        config: Loaded configuration.
        library_root: Query library root override.
        duration: Default workspace duration override.
        max_rows: Resource-inventory row ceiling override.

    Returns:
        New Config with overrides applied.

    Raises:
        ConfigError: If an override value is invalid.
    """
    library = config.library
    query_defaults = config.query_defaults

    if library_root is not None:
        library = replace(library, root=Path(library_root))
    if duration is not None:
        _validate_duration(duration, "duration")
        query_defaults = replace(query_defaults, duration=duration)
    if max_rows is not None:
        _validate_max_rows(max_rows)
        query_defaults = replace(query_defaults, max_rows=max_rows)

    return replace(config, library=library, query_defaults=query_defaults)
