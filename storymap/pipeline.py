"""
The storymap pipeline: load -> filter/normalize -> join -> scales -> layers.

Per-metric value errors skip that metric's layer; every other failure is
fatal and propagates to the caller.
"""

import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import geopandas as gpd
import pandas as pd
from loguru import logger

from .config_loader import Config, MetricSpec
from .currency import metric_values
from .errors import RegionMapError, ValueParseError
from .join import join_metrics
from .layers import LayerGroup, MapBuilder, RenderedMap, compose_metric_layer
from .loaders import load_boundaries, load_metrics
from .regions import normalize_regions
from .scales import BinnedColorScale, build_scale


def load_inputs(config: Config) -> Tuple[pd.DataFrame, gpd.GeoDataFrame]:
    """Load the metrics table and the raw boundary polygons."""
    metrics = config.get_metrics()
    encoding = config.get_system_setting("encoding")

    metrics_df = load_metrics(
        config.get_input_path("metrics_csv"),
        code_column=config.get_column_name("metrics_code"),
        name_column=config.get("columns.metrics_name"),
        metric_columns=[m.column for m in metrics],
        encoding=encoding,
    )
    boundaries = load_boundaries(
        config.get_input_path("boundaries"),
        code_column=config.get_column_name("boundaries_code"),
        name_column=config.get("columns.boundaries_name"),
    )
    return metrics_df, boundaries


def prepare_regions(config: Config, metrics_df: pd.DataFrame, boundaries: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Filter, reproject and join: one EnrichedRegion row per kept polygon."""
    regions = normalize_regions(
        boundaries,
        allow_list=config.get_regions(),
        target_crs=config.get_system_setting("output_crs"),
    )
    return join_metrics(regions, metrics_df)


def build_metric_scales(
    enriched: gpd.GeoDataFrame, metric: MetricSpec, na_color: str
) -> Tuple[BinnedColorScale, BinnedColorScale]:
    """
    Parse one metric to numbers and build its shading and legend scales.

    Adds ``<column>_value`` to `enriched` in place.

    Raises:
        ValueParseError: a value could not be parsed, or nothing was numeric
    """
    enriched[metric.value_column] = metric_values(enriched[metric.column], currency=metric.currency)

    shade = build_scale(
        enriched[metric.value_column],
        palette=metric.palette,
        bins=metric.bins,
        pretty=metric.pretty,
        na_color=na_color,
    )
    if shade.n_bins != metric.bins:
        logger.info(
            f"     ℹ️ '{metric.label}': pretty breaks use {shade.n_bins} bins "
            f"(requested {metric.bins})"
        )
    return shade, shade.reversed()


def compose_layers(config: Config, enriched: gpd.GeoDataFrame) -> List[LayerGroup]:
    """Build one LayerGroup per configured metric, skipping metrics with bad values."""
    logger.info("🎨 Building color scales and layers...")

    na_color = config.get_visualization_setting("na_color")
    style = {
        key: config.get_visualization_setting(key)
        for key in (
            "stroke_color",
            "stroke_weight",
            "stroke_opacity",
            "fill_opacity",
            "highlight_color",
            "highlight_weight",
            "highlight_fill_opacity",
            "legend_position",
        )
    }

    groups = []
    skipped: Dict[str, str] = {}
    for metric in config.get_metrics():
        try:
            shade, legend = build_metric_scales(enriched, metric, na_color)
        except ValueParseError as e:
            logger.error(f"❌ Skipping layer '{metric.label}': {e}")
            skipped[metric.label] = str(e)
            continue

        groups.append(compose_metric_layer(enriched, metric, shade, legend, style))
        values = enriched[metric.value_column]
        logger.debug(
            f"     {metric.label}: min={values.min():,.2f} max={values.max():,.2f} "
            f"missing={int(values.isna().sum())}"
        )

    if not groups:
        raise RegionMapError(f"No metric layers could be built: {skipped}")

    logger.success(f"  ✅ Composed {len(groups)} metric layers")
    if skipped:
        logger.warning(f"  ⚠️ Skipped {len(skipped)} metric layers: {list(skipped)}")
    return groups


def build_storymap(config: Config, default_layer: Optional[str] = None) -> RenderedMap:
    """
    Run the full pipeline and return the finished map.

    Args:
        config: Loaded configuration
        default_layer: Metric label visible on first load; falls back to
            map.default_layer in config, then the first built layer

    Returns:
        RenderedMap with one toggleable layer per metric
    """
    start_time = time.time()

    metrics_df, boundaries = load_inputs(config)
    enriched = prepare_regions(config, metrics_df, boundaries)
    groups = compose_layers(config, enriched)

    builder = MapBuilder(
        title=config.get("map.title"),
        zoom_start=config.get_visualization_setting("zoom_start"),
    )
    builder.add_base_layers(config.get_base_layers())
    for group in groups:
        builder.add_layer_group(group)

    names = [g.name for g in groups]
    default_layer = default_layer or config.get("map.default_layer")
    if default_layer and default_layer not in names:
        logger.warning(f"⚠️ Default layer '{default_layer}' unavailable, using '{names[0]}'")
        default_layer = None

    rendered = builder.build(default_layer=default_layer)

    elapsed = time.time() - start_time
    logger.success(f"✅ Storymap built in {elapsed:.1f}s")
    return rendered


def render_to_file(
    config: Config,
    output_path: Optional[Union[str, Path]] = None,
    default_layer: Optional[str] = None,
) -> Path:
    """Build the map and save it as a standalone HTML file."""
    rendered = build_storymap(config, default_layer=default_layer)

    output_path = Path(output_path) if output_path else config.get_output_path("html")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    rendered.save(output_path)

    logger.success(f"  ✅ Interactive map saved: {output_path}")
    logger.info("📊 Layers:")
    for name in rendered.layer_names:
        marker = "👁️" if name == rendered.default_layer else "  "
        logger.info(f"   {marker} {name} ({rendered.effective_bins[name]} bins)")
    return output_path
