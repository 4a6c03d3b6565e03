"""
storymap - regional business metrics on an interactive choropleth

Loads a metrics table and postcode-area polygons, joins them, and renders
one toggleable folium layer per metric with its own binned color scale,
legend, hover label and popup.
"""

__version__ = "0.1.0"

from .config_loader import Config, MetricSpec
from .errors import (
    ConfigError,
    DataLoadError,
    DuplicateRegionError,
    MapBuildError,
    RegionMapError,
    ReprojectionError,
    ValueParseError,
)
from .layers import LayerGroup, MapBuilder, RenderedMap
from .pipeline import build_storymap, render_to_file
from .scales import BinnedColorScale, build_scale

__all__ = [
    "Config",
    "MetricSpec",
    "RegionMapError",
    "ConfigError",
    "DataLoadError",
    "DuplicateRegionError",
    "ValueParseError",
    "ReprojectionError",
    "MapBuildError",
    "BinnedColorScale",
    "build_scale",
    "LayerGroup",
    "MapBuilder",
    "RenderedMap",
    "build_storymap",
    "render_to_file",
]
