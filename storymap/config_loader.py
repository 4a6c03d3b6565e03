"""
Configuration Loader for the storymap pipeline

This module provides a centralized way to load and access configuration
settings from the config.yaml file.

Usage:
    from storymap.config_loader import Config

    config = Config("config.yaml")
    metrics_csv = config.get_input_path("metrics_csv")
    metrics = config.get_metrics()
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import yaml  # type: ignore[import-untyped]
from loguru import logger

from .errors import ConfigError


@dataclass(frozen=True)
class MetricSpec:
    """How one metric column becomes one toggleable map layer."""

    column: str
    label: str
    palette: Union[str, Sequence[str]] = "YlOrRd"
    bins: int = 5
    pretty: bool = True
    digits: Optional[int] = None
    currency: bool = False
    prefix: str = ""

    @property
    def value_column(self) -> str:
        """Name of the numeric column derived from the raw metric text."""
        return f"{self.column}_value"


@dataclass(frozen=True)
class BaseLayerSpec:
    tiles: str
    name: str
    attr: Optional[str] = None


def _flag(entry: Dict[str, Any], key: str, default: bool) -> bool:
    value = entry.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"'{key}' must be true or false, got {value!r} in {entry!r}")
    return value


class Config:
    """Configuration manager for the storymap pipeline."""

    # Default values that can be overridden in config
    DEFAULTS: Dict[str, Any] = {
        "columns": {
            "metrics_code": "region_code",
            "metrics_name": "region_name",
            "boundaries_code": "region_code",
            "boundaries_name": "region_name",
        },
        "system": {
            "output_crs": "EPSG:4326",
            "encoding": "utf-8",
        },
        "visualization": {
            "zoom_start": 6,
            "na_color": "#bdbdbd",
            "legend_position": "bottomright",
            "stroke_color": "#ffffff",
            "stroke_weight": 1,
            "stroke_opacity": 1.0,
            "fill_opacity": 0.7,
            "highlight_weight": 5,
            "highlight_color": "#666666",
            "highlight_fill_opacity": 0.9,
        },
        "base_layers": [
            {"tiles": "CartoDB positron", "name": "Light"},
            {"tiles": "OpenStreetMap", "name": "Street map"},
        ],
        "output": {"html": "html/storymap.html"},
    }

    def __init__(
        self,
        config_file: Optional[Union[str, Path]] = None,
        project_root_override: Optional[Union[str, Path]] = None,
    ):
        """
        Initialize configuration manager.

        Args:
            config_file: Path to config file. If None, looks for:
                        1. Environment variable STORYMAP_CONFIG_PATH
                        2. config.yaml in current directory
            project_root_override: Resolve relative paths against this directory
                        instead of the config file's directory
        """
        if config_file is None:
            env_config = os.environ.get("STORYMAP_CONFIG_PATH")
            if env_config and Path(env_config).exists():
                config_file = env_config
                logger.debug(f"Using config from environment: {config_file}")
            elif Path("config.yaml").exists():
                config_file = "config.yaml"
            else:
                raise ConfigError(
                    "No config.yaml found. Check current directory or set STORYMAP_CONFIG_PATH"
                )

        self.config_path = Path(config_file).resolve()
        if not self.config_path.exists():
            raise ConfigError(f"Config file not found: {self.config_path}")

        if project_root_override:
            self.project_root = Path(project_root_override).resolve()
            logger.debug(f"Using project root override: {self.project_root}")
        else:
            self.project_root = self.config_path.parent

        logger.debug(f"Loading config from: {self.config_path}")
        logger.debug(f"Project root: {self.project_root}")

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                self.data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(self.data, dict):
            raise ConfigError(f"Config root must be a mapping: {self.config_path}")

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], project_root: Union[str, Path] = "."
    ) -> "Config":
        """Build a config from an in-memory mapping (used by tests and overrides)."""
        config = cls.__new__(cls)
        config.config_path = None
        config.project_root = Path(project_root).resolve()
        config.data = data
        return config

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation, falling back to DEFAULTS.

        Args:
            key_path: Dot-separated path to the configuration value
            default: Default value if key not found in config or defaults

        Returns:
            Configuration value
        """
        keys = key_path.split(".")

        value: Any = self.data
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                value = None
                break

        if value is None:
            value = self.DEFAULTS
            for key in keys:
                if isinstance(value, dict) and key in value:
                    value = value[key]
                else:
                    return default

        return value

    def _resolve(self, relative_path: Union[str, Path]) -> Path:
        path = Path(relative_path)
        if path.is_absolute():
            return path
        return self.project_root / path

    def get_input_path(self, filename_key: str) -> Path:
        """
        Get full path to an input file listed under input_files.

        Args:
            filename_key: Key for the filename in input_files

        Returns:
            Absolute path to the input file
        """
        relative_path_str = self.data.get("input_files", {}).get(filename_key)
        if not relative_path_str:
            raise ConfigError(
                f"Input filename key '{filename_key}' not found in config: input_files"
            )
        return self._resolve(relative_path_str)

    def get_output_path(self, output_key: str = "html") -> Path:
        """Get full path to an output file listed under output."""
        relative_path_str = self.get(f"output.{output_key}")
        if not relative_path_str:
            raise ConfigError(f"Output key '{output_key}' not found in config: output")
        return self._resolve(relative_path_str)

    def get_column_name(self, column_key: str) -> str:
        """Get column name with defaults."""
        result = self.get(f"columns.{column_key}")
        if isinstance(result, str):
            return result
        raise ConfigError(f"Column name not found or not a string: {column_key}")

    def get_system_setting(self, setting_key: str) -> Any:
        return self.get(f"system.{setting_key}")

    def get_visualization_setting(self, setting_key: str) -> Any:
        return self.get(f"visualization.{setting_key}")

    def get_regions(self) -> List[str]:
        """Get the allow-list of region codes to keep on the map."""
        regions = self.get("regions")
        if not regions or not isinstance(regions, list):
            raise ConfigError("Config must list at least one region code under 'regions'")
        return [str(code) for code in regions]

    def get_metrics(self) -> List[MetricSpec]:
        """Get one MetricSpec per entry under 'metrics'."""
        entries = self.get("metrics")
        if not entries or not isinstance(entries, list):
            raise ConfigError("Config must define at least one entry under 'metrics'")

        metrics = []
        for entry in entries:
            if isinstance(entry, str):
                entry = {"column": entry}
            if not isinstance(entry, dict) or "column" not in entry:
                raise ConfigError(f"Metric entry needs a 'column': {entry!r}")
            try:
                bins = int(entry.get("bins", 5))
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid metric entry {entry!r}: {e}") from e
            if bins < 1:
                raise ConfigError(f"Metric '{entry['column']}' needs bins >= 1, got {bins}")

            digits = entry.get("digits")
            valid_digits = isinstance(digits, int) and not isinstance(digits, bool) and digits >= 1
            if digits is not None and not valid_digits:
                raise ConfigError(
                    f"Metric '{entry['column']}': digits must be a positive integer, got {digits!r}"
                )

            metrics.append(
                MetricSpec(
                    column=entry["column"],
                    label=entry.get("label", entry["column"]),
                    palette=entry.get("palette", "YlOrRd"),
                    bins=bins,
                    pretty=_flag(entry, "pretty", True),
                    digits=digits,
                    currency=_flag(entry, "currency", False),
                    prefix=entry.get("prefix", ""),
                )
            )

        labels = [m.label for m in metrics]
        if len(set(labels)) != len(labels):
            raise ConfigError(f"Metric labels must be unique: {labels}")
        return metrics

    def get_base_layers(self) -> List[BaseLayerSpec]:
        entries = self.get("base_layers") or []
        if not isinstance(entries, list):
            raise ConfigError("'base_layers' must be a list of tile layers")

        layers = []
        for entry in entries:
            if isinstance(entry, str):
                entry = {"tiles": entry}
            if not isinstance(entry, dict) or not entry.get("tiles"):
                raise ConfigError(f"Base layer entry needs 'tiles': {entry!r}")
            layers.append(
                BaseLayerSpec(
                    tiles=entry["tiles"],
                    name=entry.get("name", entry["tiles"]),
                    attr=entry.get("attr"),
                )
            )
        return layers

    def validate_input_files(self) -> Dict[str, bool]:
        """Validate that input files exist."""
        results: Dict[str, bool] = {}
        for filename_key in self.data.get("input_files", {}):
            results[filename_key] = self.get_input_path(filename_key).exists()
        return results

    def log_config_summary(self) -> None:
        """Log a summary of the current configuration."""
        logger.debug("📋 Configuration Summary")
        logger.debug("=" * 50)
        logger.debug(f"Project: {self.get('project_name', 'Unknown')}")
        logger.debug(f"Description: {self.get('description', 'No description')}")
        logger.debug(f"Config file: {self.config_path}")

        logger.debug("📊 Input Files:")
        for file_key, exists in self.validate_input_files().items():
            status = "✅" if exists else "❌"
            logger.debug(f"  {status} {file_key}")

        logger.debug(f"🗺️ Regions: {', '.join(self.get_regions())}")
        logger.debug("🎨 Metrics:")
        for metric in self.get_metrics():
            logger.debug(f"  {metric.label} ({metric.column}): {metric.palette}, {metric.bins} bins")
