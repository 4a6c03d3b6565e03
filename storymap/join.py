"""
Attribute join of the metrics table onto region polygons.
"""

from typing import Dict, Set

import geopandas as gpd
import pandas as pd
from loguru import logger

from .errors import DuplicateRegionError
from .loaders import CODE_COLUMN, NAME_COLUMN


def summarize_join(regions: gpd.GeoDataFrame, metrics: pd.DataFrame) -> Dict[str, Set[str]]:
    """Report which region codes match, and which appear on one side only."""
    region_codes = set(regions[CODE_COLUMN].astype(str))
    metric_codes = set(metrics[CODE_COLUMN].astype(str))

    return {
        "matched": region_codes & metric_codes,
        "regions_only": region_codes - metric_codes,
        "metrics_only": metric_codes - region_codes,
    }


def join_metrics(regions: gpd.GeoDataFrame, metrics: pd.DataFrame) -> gpd.GeoDataFrame:
    """
    Left-join metric records onto region polygons by region code.

    Polygons decide membership: the result has exactly one row per input
    polygon, and polygons without a metric record keep null metric fields.

    Raises:
        DuplicateRegionError: two polygons share a region code
    """
    logger.info("🔗 Joining metrics onto region polygons...")

    duplicated = regions[CODE_COLUMN].astype(str)
    duplicated = duplicated[duplicated.duplicated()]
    if not duplicated.empty:
        logger.critical(f"❌ Duplicate region codes in polygon set: {sorted(set(duplicated))}")
        raise DuplicateRegionError(set(duplicated))

    coverage = summarize_join(regions, metrics)
    logger.debug(f"     Region codes: {len(regions):,}")
    logger.debug(f"     Metric codes: {len(metrics):,}")
    logger.debug(f"     Common codes: {len(coverage['matched']):,}")
    if coverage["regions_only"]:
        logger.warning(
            f"  ⚠️ {len(coverage['regions_only'])} regions without metrics: "
            f"{sorted(coverage['regions_only'])}"
        )
    if coverage["metrics_only"]:
        logger.debug(f"  📍 Metric records outside the map: {sorted(coverage['metrics_only'])}")

    metrics = metrics.copy()
    metrics[CODE_COLUMN] = metrics[CODE_COLUMN].astype(str)

    # Metric columns win over same-named polygon attributes
    shadowed = [
        col
        for col in metrics.columns
        if col in regions.columns and col not in (CODE_COLUMN, NAME_COLUMN, regions.geometry.name)
    ]
    if shadowed:
        logger.warning(f"  ⚠️ Polygon attributes replaced by metric columns: {shadowed}")
        regions = regions.drop(columns=shadowed)

    enriched = regions.merge(
        metrics,
        on=CODE_COLUMN,
        how="left",
        suffixes=("", "_metric"),
        validate="one_to_one",
    )

    # Prefer the metrics table's display name, fall back to the polygon's
    metric_name = f"{NAME_COLUMN}_metric"
    if metric_name in enriched.columns:
        if NAME_COLUMN in enriched.columns:
            enriched[NAME_COLUMN] = enriched[metric_name].fillna(enriched[NAME_COLUMN])
        else:
            enriched[NAME_COLUMN] = enriched[metric_name]
        enriched = enriched.drop(columns=[metric_name])
    if NAME_COLUMN not in enriched.columns:
        enriched[NAME_COLUMN] = enriched[CODE_COLUMN]
    else:
        enriched[NAME_COLUMN] = enriched[NAME_COLUMN].fillna(enriched[CODE_COLUMN])

    logger.success(f"  ✅ Joined metrics for {len(coverage['matched']):,} of {len(enriched):,} regions")
    return gpd.GeoDataFrame(enriched, geometry=regions.geometry.name, crs=regions.crs)
