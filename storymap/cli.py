#!/usr/bin/env python3
"""
Storymap command line interface

Builds the regional metrics choropleth and writes it as a standalone HTML
widget, with optional config overrides on the command line.

Usage:
    storymap                                      # Use ./config.yaml
    storymap --config path/to/config.yaml
    storymap --output html/metrics.html --default-layer "Sales"
    storymap --set metrics.0.bins=7               # Override config values
    storymap --dry-run                            # Show the plan only
    storymap --verbose                            # Enable DEBUG level logging
"""

import sys
import traceback
from typing import Any, Tuple

import click
from loguru import logger

from .config_loader import Config
from .errors import RegionMapError
from .pipeline import render_to_file


class ConfigOverride(click.ParamType):
    """KEY=VALUE config override with automatic value typing."""

    name = "config_override"

    def convert(self, value, param, ctx) -> Tuple[str, Any]:
        if "=" not in value:
            self.fail(f"Invalid format: {value}. Use KEY=VALUE", param, ctx)

        key, val = value.split("=", 1)

        if val.lower() in ("true", "false"):
            parsed_val: Any = val.lower() == "true"
        elif val.isdigit():
            parsed_val = int(val)
        elif "." in val and val.replace(".", "", 1).isdigit():
            parsed_val = float(val)
        else:
            parsed_val = val

        return key, parsed_val


def apply_override(config: Config, key: str, value: Any) -> None:
    """Apply a dot-path override; numeric path parts index into lists."""
    keys = key.split(".")
    current: Any = config.data
    for i, k in enumerate(keys[:-1]):
        if isinstance(current, list):
            try:
                current = current[int(k)]
            except (ValueError, IndexError) as e:
                raise click.BadParameter(f"Cannot apply override {key}: {e}") from e
        else:
            if k not in current or current[k] is None:
                current[k] = {}
            current = current[k]

    last = keys[-1]
    if isinstance(current, list):
        try:
            current[int(last)] = value
        except (ValueError, IndexError) as e:
            raise click.BadParameter(f"Cannot apply override {key}: {e}") from e
    else:
        current[last] = value
    logger.debug(f"Added override: {key} = {value}")


def setup_logging(verbose: bool = False, enable_trace: bool = False) -> None:
    """
    Configure loguru logging with appropriate levels.

    Args:
        verbose: If True, set log level to DEBUG
        enable_trace: If True, enable TRACE level logging for deep debugging
    """
    logger.remove()

    if enable_trace:
        log_level = "TRACE"
        log_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
    elif verbose:
        log_level = "DEBUG"
        log_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
    else:
        log_level = "INFO"
        log_format = (
            "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
        )

    logger.add(
        sys.stderr,
        format=log_format,
        level=log_level,
        colorize=True,
        backtrace=enable_trace,
        diagnose=enable_trace,
    )

    if verbose:
        logger.debug("🔧 Verbose logging enabled (DEBUG level)")
    if enable_trace:
        logger.trace("🔍 Trace logging enabled - maximum detail mode")


def show_dry_run_info(config: Config) -> None:
    logger.info("🔍 DRY RUN MODE - no map will be written")
    logger.info("=" * 60)
    logger.info(f"  📋 Project: {config.get('project_name')}")

    for file_key, exists in config.validate_input_files().items():
        logger.info(f"  📄 {file_key}: {config.get_input_path(file_key)} {'✅' if exists else '❌'}")

    logger.info(f"  🗺️ Regions: {', '.join(config.get_regions())}")
    logger.info(f"  🌐 Target CRS: {config.get_system_setting('output_crs')}")
    logger.info("Layers that would be built:")
    for step, metric in enumerate(config.get_metrics(), start=1):
        logger.info(f"  {step}. {metric.label} ({metric.column}, {metric.bins} bins, {metric.palette})")
    logger.info(f"  📄 Output: {config.get_output_path('html')}")


@click.command()
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=False, dir_okay=False),
    help="Path to config.yaml (default: $STORYMAP_CONFIG_PATH or ./config.yaml)",
)
@click.option("--output", type=click.Path(dir_okay=False), help="Override output HTML path")
@click.option("--default-layer", help="Metric label visible when the map opens")
@click.option(
    "--set",
    "config_overrides",
    multiple=True,
    type=ConfigOverride(),
    help="Set config values using dot notation (e.g., visualization.fill_opacity=0.8)",
)
@click.option("--dry-run", is_flag=True, help="Show what would be built without writing")
@click.option("-v", "--verbose", is_flag=True, help="Enable DEBUG level logging")
@click.option("--trace", is_flag=True, help="Enable TRACE level logging for deep debugging")
@click.option("--log-file", type=str, help="Also log to specified file")
def cli(config_file, output, default_layer, config_overrides, dry_run, verbose, trace, log_file):
    """
    Build the regional metrics storymap.

    Loads the metrics table and region boundaries named in config.yaml and
    writes an interactive choropleth with one toggleable layer per metric.
    """
    setup_logging(verbose=verbose, enable_trace=trace)

    if log_file:
        logger.add(
            log_file,
            level="TRACE" if trace else ("DEBUG" if verbose else "INFO"),
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}",
            rotation="10 MB",
            retention="7 days",
        )
        logger.info(f"📄 Also logging to file: {log_file}")

    logger.info("🗺️ Regional Metrics Storymap")

    try:
        config = Config(config_file)
        for key, value in config_overrides:
            apply_override(config, key, value)
        logger.info(f"📋 Project: {config.get('project_name')}")
        config.log_config_summary()

        if dry_run:
            show_dry_run_info(config)
            return

        output_path = render_to_file(config, output_path=output, default_layer=default_layer)
    except RegionMapError as e:
        logger.critical(f"💥 {type(e).__name__}: {e}")
        logger.trace(traceback.format_exc())
        if not trace:
            logger.info("💡 For detailed debugging, run with --trace flag")
        sys.exit(1)

    click.echo(str(output_path))


if __name__ == "__main__":
    cli()
