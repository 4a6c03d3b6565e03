"""
Region filtering and coordinate normalization.

Filtering always goes through a single GeoDataFrame row mask so each
geometry keeps its own attribute row.
"""

import traceback
from typing import Iterable

import geopandas as gpd
import numpy as np
from loguru import logger
from pyproj import CRS
from pyproj.exceptions import CRSError

from .errors import ReprojectionError
from .loaders import CODE_COLUMN


def filter_regions(gdf: gpd.GeoDataFrame, allow_list: Iterable[str]) -> gpd.GeoDataFrame:
    """
    Keep only polygons whose region code is in the allow-list.

    Codes are compared as exact, case-sensitive strings. The input frame
    is not modified.
    """
    allowed = {str(code) for code in allow_list}

    regions = gdf.copy()
    regions[CODE_COLUMN] = regions[CODE_COLUMN].astype(str)

    mask = regions[CODE_COLUMN].isin(allowed)
    filtered = regions[mask].reset_index(drop=True)

    dropped = len(regions) - len(filtered)
    logger.success(f"  ✅ Kept {len(filtered):,} of {len(regions):,} regions in allow-list")
    if dropped:
        logger.debug(f"     Dropped {dropped:,} regions outside the allow-list")

    missing = sorted(allowed - set(filtered[CODE_COLUMN]))
    if missing:
        logger.warning(f"  ⚠️ Allow-listed regions with no polygon: {missing}")

    return filtered


def reproject_regions(gdf: gpd.GeoDataFrame, target_crs: str = "EPSG:4326") -> gpd.GeoDataFrame:
    """
    Reproject every polygon into one target coordinate reference system.

    Raises:
        ReprojectionError: source CRS unknown, target CRS invalid, or the
            transform produced non-finite coordinates
    """
    if gdf.crs is None:
        logger.critical("❌ Region boundaries have no CRS; cannot reproject")
        raise ReprojectionError("Region boundaries have no coordinate reference system")

    try:
        target = CRS.from_user_input(target_crs)
    except CRSError as e:
        raise ReprojectionError(f"Unknown target CRS {target_crs!r}: {e}") from e

    if gdf.crs == target:
        logger.debug(f"  ✓ Already in {target_crs}")
        return gdf.copy()

    logger.debug(f"  🔄 Reprojecting regions from {gdf.crs} to {target_crs}")
    try:
        reprojected = gdf.to_crs(target)
    except (CRSError, ValueError) as e:
        logger.critical(f"❌ Error during reprojection: {e}")
        logger.trace(traceback.format_exc())
        raise ReprojectionError(f"Could not reproject regions to {target_crs}: {e}") from e

    if not reprojected.empty:
        bounds = reprojected.total_bounds
        if not np.all(np.isfinite(bounds)):
            raise ReprojectionError(
                f"Reprojection to {target_crs} produced non-finite coordinates"
            )
        logger.debug(f"  ✓ Reprojected bounds: {np.round(bounds, 6).tolist()}")

    return reprojected


def normalize_regions(
    gdf: gpd.GeoDataFrame, allow_list: Iterable[str], target_crs: str = "EPSG:4326"
) -> gpd.GeoDataFrame:
    """Filter to the allow-list, then reproject what remains."""
    logger.info("🎯 Filtering and normalizing region polygons...")
    filtered = filter_regions(gdf, allow_list)
    return reproject_regions(filtered, target_crs)
