"""
Configuration Management for Salvo

Provides configuration loading from multiple sources:
- Default values
- Configuration files (YAML, TOML, JSON)
- Environment variables

Configuration precedence (highest to lowest):
1. Environment variables (SALVO_*)
2. Configuration file
3. Default values
"""

import json
import logging
import os
import tomllib
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration Dataclasses
# ============================================================================


@dataclass
class StatisticPolicy:
    """Which damage counts toward one statistic."""

    include_self: bool = False
    include_allies: bool = False


def _default_policies() -> dict[str, StatisticPolicy]:
    return {
        # What the game's own scoreboard calls "damage"
        "total_dealt": StatisticPolicy(include_self=True, include_allies=True),
        # Damage used for scoring (PR, team rollups)
        "enemy_damage": StatisticPolicy(include_self=False, include_allies=False),
        "received": StatisticPolicy(include_self=True, include_allies=True),
    }


@dataclass
class ReconstructionConfig:
    """Configuration for battle state reconstruction."""

    # Drop events whose sequence key was already applied
    dedupe_by_sequence: bool = True
    # Keep accepting server results after battle_end
    accept_results_after_end: bool = True
    # Ship / consumable / achievement definitions (JSON or YAML)
    definitions_path: str | None = None

    # Live tailing
    live_poll_interval: float = 0.25
    live_idle_timeout: float = 30.0


@dataclass
class AggregationConfig:
    """Configuration for the damage interaction aggregator."""

    dedupe_strikes: bool = True
    # Absolute tolerance when comparing dealt vs received sums
    conservation_tolerance: float = 0.5
    policies: dict[str, StatisticPolicy] = field(default_factory=_default_policies)

    def policy(self, statistic: str) -> StatisticPolicy:
        return self.policies.get(statistic, StatisticPolicy())


@dataclass
class ScoringConfig:
    """Configuration for the performance rating estimate."""

    strategy: str = "pr-wows-numbers-v1"
    # Strategy used when the primary one cannot score (no expected values)
    fallback_strategy: str | None = "class-tier-v1"
    expected_values_path: str | None = None

    # Tolerance before server/derived damage disagreement is reported
    discrepancy_tolerance: float = 1.0


@dataclass
class TrackerConfig:
    """Configuration for the session & player tracker."""

    db_path: str | None = None
    similarity_threshold: float = 0.8
    max_edit_distance: int = 3
    min_name_length: int = 4
    exclude_division_mates: bool = True
    query_page_size: int = 200
    append_retries: int = 3


@dataclass
class BatchConfig:
    """Configuration for processing many battles at once."""

    workers: int = 0  # 0 = CPU count - 1
    use_processes: bool = False


@dataclass
class WatcherConfig:
    """Configuration for the event log folder watcher."""

    min_file_size_bytes: int = 64
    debounce_seconds: float = 2.0
    recursive: bool = False
    auto_analyze: bool = True
    watch_folder: str | None = None
    pattern: str = "*.jsonl"


@dataclass
class ExportConfig:
    """Configuration for data export."""

    default_format: str = "json"
    json_indent: int = 2
    csv_delimiter: str = ","
    timestamp_format: str = "%Y-%m-%d_%H-%M-%S"


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str | None = None


@dataclass
class SalvoConfig:
    """Main configuration container."""

    reconstruction: ReconstructionConfig = field(default_factory=ReconstructionConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Version of the config format
    config_version: str = "1.0"


# ============================================================================
# Configuration Loading
# ============================================================================


def get_default_config_paths() -> list[Path]:
    """Get the default paths to search for configuration files."""
    paths = []

    # Current directory
    paths.append(Path.cwd() / "salvo.yaml")
    paths.append(Path.cwd() / "salvo.toml")
    paths.append(Path.cwd() / "salvo.json")
    paths.append(Path.cwd() / ".salvo.yaml")

    # User home directory
    home = Path.home()
    paths.append(home / ".config" / "salvo" / "config.yaml")
    paths.append(home / ".config" / "salvo" / "config.toml")
    paths.append(home / ".salvo.yaml")

    # XDG config directory
    xdg_config = os.environ.get("XDG_CONFIG_HOME", str(home / ".config"))
    paths.append(Path(xdg_config) / "salvo" / "config.yaml")

    return paths


def load_yaml_config(path: Path) -> dict[str, Any]:
    """Load configuration from a YAML file."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from a TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from a JSON file."""
    with open(path) as f:
        return json.load(f)


def load_config_file(path: Path) -> dict[str, Any]:
    """Load configuration from a file, detecting format from extension."""
    if not path.exists():
        return {}

    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return load_yaml_config(path)
    elif suffix == ".toml":
        return load_toml_config(path)
    elif suffix == ".json":
        return load_json_config(path)
    else:
        logger.warning(f"Unknown config file format: {suffix}")
        return {}


def load_env_config() -> dict[str, Any]:
    """Load configuration from environment variables."""
    config: dict[str, Any] = {}

    env_mappings = {
        "SALVO_LOG_LEVEL": ("logging", "level"),
        "SALVO_LOG_FILE": ("logging", "file"),
        "SALVO_DB_PATH": ("tracker", "db_path"),
        "SALVO_SIMILARITY_THRESHOLD": ("tracker", "similarity_threshold"),
        "SALVO_MAX_EDIT_DISTANCE": ("tracker", "max_edit_distance"),
        "SALVO_SCORING_STRATEGY": ("scoring", "strategy"),
        "SALVO_EXPECTED_VALUES": ("scoring", "expected_values_path"),
        "SALVO_DEFINITIONS": ("reconstruction", "definitions_path"),
        "SALVO_WATCH_FOLDER": ("watcher", "watch_folder"),
        "SALVO_AUTO_ANALYZE": ("watcher", "auto_analyze"),
        "SALVO_EXPORT_FORMAT": ("export", "default_format"),
        "SALVO_BATCH_WORKERS": ("batch", "workers"),
        "SALVO_USE_PROCESSES": ("batch", "use_processes"),
    }

    for env_var, (section, key) in env_mappings.items():
        value = os.environ.get(env_var)
        if value is not None:
            if section not in config:
                config[section] = {}

            # Type conversion
            if value.lower() in ("true", "false"):
                value = value.lower() == "true"
            elif value.isdigit():
                value = int(value)
            else:
                try:
                    value = float(value)
                except ValueError:
                    pass

            config[section][key] = value

    return config


def merge_configs(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two configuration dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value

    return result


def dict_to_config(data: dict[str, Any]) -> SalvoConfig:
    """Convert a dictionary to SalvoConfig."""
    config = SalvoConfig()

    for section_field in fields(config):
        name = section_field.name
        if name not in data or not isinstance(data[name], dict):
            continue
        section = getattr(config, name)
        for key, value in data[name].items():
            if not hasattr(section, key):
                logger.debug(f"Ignoring unknown config key: {name}.{key}")
                continue
            if name == "aggregation" and key == "policies":
                value = {
                    stat: StatisticPolicy(**policy) if isinstance(policy, dict) else policy
                    for stat, policy in value.items()
                }
                value = {**_default_policies(), **value}
            setattr(section, key, value)

    return config


def load_config(config_file: Path | None = None, include_env: bool = True) -> SalvoConfig:
    """
    Load configuration from all sources.

    Args:
        config_file: Explicit path to a config file (optional)
        include_env: Whether to include environment variables

    Returns:
        Merged SalvoConfig
    """
    config_data: dict[str, Any] = {}

    # Try to find and load a config file
    if config_file:
        config_data = load_config_file(config_file)
        logger.info(f"Loaded config from: {config_file}")
    else:
        for path in get_default_config_paths():
            if path.exists():
                config_data = load_config_file(path)
                logger.info(f"Loaded config from: {path}")
                break

    # Merge environment variables
    if include_env:
        env_config = load_env_config()
        config_data = merge_configs(config_data, env_config)

    return dict_to_config(config_data)


# ============================================================================
# Configuration Saving
# ============================================================================


def config_to_dict(config: SalvoConfig) -> dict[str, Any]:
    """Convert SalvoConfig to a dictionary."""
    return asdict(config)


def save_config(config: SalvoConfig, path: Path) -> None:
    """
    Save configuration to a file.

    Args:
        config: Configuration to save
        path: Path to save to (YAML or JSON, detected from extension)
    """
    data = config_to_dict(config)
    suffix = path.suffix.lower()

    if suffix in (".yaml", ".yml"):
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
    elif suffix == ".json":
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
    else:
        raise ValueError(f"Unknown config format: {suffix}")

    logger.info(f"Saved config to: {path}")


# ============================================================================
# Global Configuration
# ============================================================================

_global_config: SalvoConfig | None = None


def get_config() -> SalvoConfig:
    """Get the global configuration, loading it if necessary."""
    global _global_config

    if _global_config is None:
        _global_config = load_config()

    return _global_config


def set_config(config: SalvoConfig) -> None:
    """Set the global configuration."""
    global _global_config
    _global_config = config


def reset_config() -> None:
    """Reset the global configuration to defaults."""
    global _global_config
    _global_config = None


# ============================================================================
# Configuration Templates
# ============================================================================

DEFAULT_CONFIG_YAML = """# Salvo Configuration

# Battle reconstruction
reconstruction:
  dedupe_by_sequence: true
  accept_results_after_end: true
  # definitions_path: /path/to/definitions.yaml
  live_poll_interval: 0.25
  live_idle_timeout: 30.0

# Damage aggregation. Policies decide whether self / ally damage counts
# toward each statistic.
aggregation:
  dedupe_strikes: true
  conservation_tolerance: 0.5
  policies:
    total_dealt: {include_self: true, include_allies: true}
    enemy_damage: {include_self: false, include_allies: false}

# Performance rating
scoring:
  strategy: pr-wows-numbers-v1
  fallback_strategy: class-tier-v1
  # expected_values_path: /path/to/pr_expected_values.json

# Player tracker / stream-sniper correlation
tracker:
  # db_path: ~/.salvo/encounters.db
  similarity_threshold: 0.8
  max_edit_distance: 3
  min_name_length: 4
  exclude_division_mates: true

# Batch processing
batch:
  workers: 0  # 0 = CPU count - 1
  use_processes: false

# Event log folder watcher
watcher:
  debounce_seconds: 2.0
  recursive: false
  auto_analyze: true
  pattern: "*.jsonl"
  # watch_folder: /path/to/decoded/replays

# Export settings
export:
  default_format: json
  json_indent: 2
  csv_delimiter: ","

# Logging settings
logging:
  level: INFO
  # file: /path/to/salvo.log
"""


def generate_default_config(path: Path) -> None:
    """Generate a default configuration file."""
    suffix = path.suffix.lower()

    if suffix in (".yaml", ".yml"):
        path.write_text(DEFAULT_CONFIG_YAML)
    else:
        config = SalvoConfig()
        save_config(config, path)

    logger.info(f"Generated default config at: {path}")
