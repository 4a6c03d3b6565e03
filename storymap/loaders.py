"""
Dataset loaders for the metrics table and the region boundary file.

Both loaders rename the configured key/name columns to the canonical
``region_code`` / ``region_name`` so downstream stages never need the
config to find them.
"""

import traceback
from pathlib import Path
from typing import Optional, Sequence, Union

import geopandas as gpd
import pandas as pd
from loguru import logger

from .errors import DataLoadError

CODE_COLUMN = "region_code"
NAME_COLUMN = "region_name"


def _require_columns(columns, required: Sequence[str], source: Path) -> None:
    missing_cols = [col for col in required if col not in columns]
    if missing_cols:
        logger.critical(f"❌ Missing required columns in {source.name}: {missing_cols}")
        logger.critical(f"   Available columns: {list(columns)}")
        raise DataLoadError(f"{source} missing required columns: {missing_cols}")


def load_metrics(
    path: Union[str, Path],
    code_column: str,
    name_column: Optional[str] = None,
    metric_columns: Sequence[str] = (),
    encoding: str = "utf-8",
) -> pd.DataFrame:
    """
    Load the regional metrics table.

    Every column is read as text: currency columns keep their symbol and
    thousands separators until a scale explicitly parses them.

    Args:
        path: Delimited text file, one row per region
        code_column: Column holding the region code
        name_column: Optional column holding the display name
        metric_columns: Columns that must be present
        encoding: Text encoding of the file

    Returns:
        DataFrame with canonical region_code (and region_name) columns
    """
    path = Path(path)
    logger.info(f"📊 Loading metrics from {path}")

    if not path.exists():
        logger.critical(f"❌ Metrics file not found: {path}")
        raise DataLoadError(f"Required file missing: {path}")

    try:
        df = pd.read_csv(path, dtype=str, encoding=encoding, skipinitialspace=True)
    except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        logger.critical(f"❌ Error reading metrics file: {e}")
        logger.trace(traceback.format_exc())
        raise DataLoadError(f"Could not read metrics file {path}: {e}") from e

    df.columns = df.columns.str.strip()

    required = [code_column, *metric_columns]
    if name_column:
        required.append(name_column)
    _require_columns(df.columns, required, path)

    renames = {code_column: CODE_COLUMN}
    if name_column:
        renames[name_column] = NAME_COLUMN
    df = df.rename(columns=renames)
    df[CODE_COLUMN] = df[CODE_COLUMN].astype(str).str.strip()

    duplicates = df.loc[df[CODE_COLUMN].duplicated(), CODE_COLUMN].unique().tolist()
    if duplicates:
        logger.critical(f"❌ Metrics table has duplicate region codes: {duplicates}")
        raise DataLoadError(f"Metrics file {path} has duplicate region codes: {duplicates}")

    logger.success(f"  ✅ Loaded {len(df):,} metric records with {len(df.columns) - 1} fields")
    logger.debug(f"     Columns: {list(df.columns)}")
    return df


def load_boundaries(
    path: Union[str, Path],
    code_column: str,
    name_column: Optional[str] = None,
) -> gpd.GeoDataFrame:
    """
    Load region polygons from any vector source geopandas can open.

    Args:
        path: Shapefile, GeoJSON, GeoPackage, ...
        code_column: Attribute holding the region code
        name_column: Optional attribute holding the display name

    Returns:
        GeoDataFrame with canonical region_code (and region_name) columns
    """
    path = Path(path)
    logger.info(f"🗺️ Loading region boundaries from {path}")

    if not path.exists():
        logger.critical(f"❌ Boundary file not found: {path}")
        raise DataLoadError(f"Required file missing: {path}")

    try:
        gdf = gpd.read_file(path)
    except Exception as e:
        # pyogrio/fiona raise their own driver-specific error types
        logger.critical(f"❌ Error loading boundary data: {e}")
        logger.trace(traceback.format_exc())
        raise DataLoadError(f"Could not read boundary file {path}: {e}") from e

    if not isinstance(gdf, gpd.GeoDataFrame) or gdf.empty:
        raise DataLoadError(f"Boundary file {path} has no geometry features")

    required = [code_column]
    if name_column:
        required.append(name_column)
    _require_columns(gdf.columns, required, path)

    renames = {code_column: CODE_COLUMN}
    if name_column:
        renames[name_column] = NAME_COLUMN
    gdf = gdf.rename(columns=renames)

    logger.success(f"  ✅ Loaded {len(gdf):,} region polygons")
    logger.debug(f"     CRS: {gdf.crs}")
    return gdf
