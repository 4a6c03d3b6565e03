"""
Layer composition: one toggleable choropleth layer per metric, assembled
into a single folium map by MapBuilder.

Each metric gets a LayerGroup (styled polygons, hover label, click popup
and a legend). MapBuilder wraps every group in its own FeatureGroup, binds
the legend to that group's add/remove events, and adds base tiles plus a
layer control. A built map is final.
"""

import html
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import folium
import geopandas as gpd
from branca.element import MacroElement, Template
from loguru import logger

from .config_loader import BaseLayerSpec, MetricSpec
from .errors import MapBuildError
from .loaders import CODE_COLUMN, NAME_COLUMN
from .scales import BinnedColorScale

NO_DATA_LABEL = "No data"

DEFAULT_STYLE: Dict[str, Any] = {
    "stroke_color": "#ffffff",
    "stroke_weight": 1,
    "stroke_opacity": 1.0,
    "fill_opacity": 0.7,
    "highlight_color": "#666666",
    "highlight_weight": 5,
    "highlight_fill_opacity": 0.9,
    "legend_position": "bottomright",
}


class RaiseOnHover(MacroElement):
    """Bring the hovered polygon to the top of its layer's stacking order."""

    _template = Template(
        """
        {% macro script(this, kwargs) %}
            {{ this._parent.get_name() }}.on("mouseover", function (e) {
                if (e.layer && typeof e.layer.bringToFront === "function") {
                    e.layer.bringToFront();
                }
            });
        {% endmacro %}
        """
    )

    def __init__(self):
        super().__init__()
        self._name = "RaiseOnHover"


class BoundLegend(MacroElement):
    """
    A legend control shown only while its layer is on the map.

    The same control object is added and removed as the layer toggles, so
    its content never changes between toggles.
    """

    _template = Template(
        """
        {% macro header(this, kwargs) %}
            <style>
                .storymap-legend {
                    background: rgba(255, 255, 255, 0.9);
                    padding: 6px 8px;
                    border-radius: 5px;
                    box-shadow: 0 0 15px rgba(0, 0, 0, 0.2);
                    font: 12px/18px Arial, Helvetica, sans-serif;
                    color: #333333;
                }
                .storymap-legend .legend-title {
                    font-weight: bold;
                    margin-bottom: 4px;
                }
                .storymap-legend i {
                    width: 14px;
                    height: 14px;
                    float: left;
                    margin: 2px 6px 0 0;
                    opacity: 0.8;
                }
            </style>
        {% endmacro %}

        {% macro script(this, kwargs) %}
            var {{ this.get_name() }} = L.control({position: {{ this.position|tojson }}});
            {{ this.get_name() }}.onAdd = function (map) {
                var div = L.DomUtil.create("div", "info legend storymap-legend");
                div.innerHTML = {{ this.html|tojson }};
                return div;
            };
            {{ this.layer.get_name() }}.on("add", function () {
                {{ this.get_name() }}.addTo({{ this._parent.get_name() }});
            });
            {{ this.layer.get_name() }}.on("remove", function () {
                {{ this.get_name() }}.remove();
            });
            if ({{ this._parent.get_name() }}.hasLayer({{ this.layer.get_name() }})) {
                {{ this.get_name() }}.addTo({{ this._parent.get_name() }});
            }
        {% endmacro %}
        """
    )

    def __init__(self, layer: folium.FeatureGroup, legend: "LegendSpec"):
        super().__init__()
        self._name = "BoundLegend"
        self.layer = layer
        self.position = legend.position
        self.html = legend.to_html()


@dataclass(frozen=True)
class LegendSpec:
    title: str
    entries: Tuple[Tuple[str, str], ...]
    position: str = "bottomright"

    def to_html(self) -> str:
        rows = [f'<div class="legend-title">{html.escape(self.title)}</div>']
        for label, color in self.entries:
            rows.append(f'<i style="background:{color}"></i>{html.escape(label)}<br>')
        return "".join(rows)


@dataclass(frozen=True)
class LayerGroup:
    """One metric's polygons, legend and toggle identity (its name)."""

    name: str
    geojson: folium.GeoJson
    legend: LegendSpec
    scale: BinnedColorScale
    bounds: Tuple[float, float, float, float]


def make_style_function(value_column: str, scale: BinnedColorScale, style: Dict[str, Any]):
    def style_function(feature):
        value = feature["properties"].get(value_column)
        return {
            "fillColor": scale(value),
            "color": style["stroke_color"],
            "weight": style["stroke_weight"],
            "opacity": style["stroke_opacity"],
            "fillOpacity": style["fill_opacity"],
        }

    return style_function


def make_highlight_function(style: Dict[str, Any]):
    def highlight_function(feature):
        return {
            "color": style["highlight_color"],
            "weight": style["highlight_weight"],
            "fillOpacity": style["highlight_fill_opacity"],
        }

    return highlight_function


def compose_metric_layer(
    enriched: gpd.GeoDataFrame,
    metric: MetricSpec,
    shade_scale: BinnedColorScale,
    legend_scale: BinnedColorScale,
    style: Optional[Dict[str, Any]] = None,
) -> LayerGroup:
    """
    Build the styled polygons, label, popup and legend for one metric.

    Args:
        enriched: Joined regions carrying the raw metric column and its
            numeric ``<column>_value`` counterpart
        metric: Metric configuration
        shade_scale: Ascending scale used to fill polygons
        legend_scale: Reversed scale used to list the legend largest-first
        style: Overrides for DEFAULT_STYLE keys

    Returns:
        LayerGroup ready to hand to MapBuilder
    """
    style = {**DEFAULT_STYLE, **(style or {})}
    logger.debug(f"  🎨 Composing layer '{metric.label}' ({shade_scale.n_bins} bins)")

    display_column = f"{metric.column}_display"
    layer_data = enriched[[CODE_COLUMN, NAME_COLUMN, metric.column, metric.value_column, enriched.geometry.name]].copy()
    layer_data[display_column] = layer_data[metric.column].fillna(NO_DATA_LABEL).astype(str)
    layer_data = layer_data.drop(columns=[metric.column])

    geojson = folium.GeoJson(
        layer_data,
        name=metric.label,
        style_function=make_style_function(metric.value_column, shade_scale, style),
        highlight_function=make_highlight_function(style),
        tooltip=folium.GeoJsonTooltip(
            fields=[NAME_COLUMN, display_column],
            aliases=["", f"{metric.label}:"],
            labels=True,
            sticky=True,
            localize=True,
        ),
        popup=folium.GeoJsonPopup(
            fields=[NAME_COLUMN, display_column, CODE_COLUMN],
            aliases=["Region:", f"{metric.label}:", "Postcode area:"],
            labels=True,
            localize=True,
        ),
    )
    geojson.add_child(RaiseOnHover())

    entries = legend_scale.legend_entries(digits=metric.digits, prefix=metric.prefix)
    if layer_data[metric.value_column].isna().any():
        entries.append((NO_DATA_LABEL, legend_scale.na_color))

    legend = LegendSpec(
        title=metric.label,
        entries=tuple(entries),
        position=style["legend_position"],
    )

    minx, miny, maxx, maxy = (float(v) for v in enriched.total_bounds)
    return LayerGroup(
        name=metric.label,
        geojson=geojson,
        legend=legend,
        scale=shade_scale,
        bounds=(minx, miny, maxx, maxy),
    )


@dataclass(frozen=True)
class RenderedMap:
    """A finished map; build a new one rather than changing this one."""

    map: folium.Map
    layer_names: Tuple[str, ...]
    base_layer_names: Tuple[str, ...]
    default_layer: str
    effective_bins: Dict[str, int] = field(default_factory=dict)

    def to_html(self) -> str:
        return self.map.get_root().render()

    def save(self, path) -> None:
        self.map.save(str(path))

    def _repr_html_(self) -> str:
        return self.map._repr_html_()


class MapBuilder:
    """
    Accumulates base layers and metric LayerGroups, then builds one map.

    Usage:
        builder = MapBuilder(title="Regional metrics")
        builder.add_base_layer("CartoDB positron", "Light")
        builder.add_layer_group(group)
        rendered = builder.build(default_layer="Population")
    """

    def __init__(self, title: Optional[str] = None, zoom_start: int = 6, **map_kwargs):
        self.title = title
        self.zoom_start = zoom_start
        self.map_kwargs = map_kwargs
        self._base_layers: List[BaseLayerSpec] = []
        self._groups: List[LayerGroup] = []
        self._built = False

    def _check_open(self) -> None:
        if self._built:
            raise MapBuildError("Map already built; create a new MapBuilder")

    def add_base_layer(self, tiles: str, name: Optional[str] = None, attr: Optional[str] = None) -> "MapBuilder":
        self._check_open()
        name = name or tiles
        if name in {b.name for b in self._base_layers}:
            raise MapBuildError(f"Duplicate base layer name: {name}")
        self._base_layers.append(BaseLayerSpec(tiles=tiles, name=name, attr=attr))
        return self

    def add_base_layers(self, specs: Sequence[BaseLayerSpec]) -> "MapBuilder":
        for spec in specs:
            self.add_base_layer(spec.tiles, spec.name, spec.attr)
        return self

    def add_layer_group(self, group: LayerGroup) -> "MapBuilder":
        self._check_open()
        if group.name in {g.name for g in self._groups}:
            raise MapBuildError(f"Duplicate layer group name: {group.name}")
        self._groups.append(group)
        return self

    def _bounds(self) -> Tuple[float, float, float, float]:
        minx = min(g.bounds[0] for g in self._groups)
        miny = min(g.bounds[1] for g in self._groups)
        maxx = max(g.bounds[2] for g in self._groups)
        maxy = max(g.bounds[3] for g in self._groups)
        return minx, miny, maxx, maxy

    def build(self, default_layer: Optional[str] = None) -> RenderedMap:
        """
        Assemble the folium map.

        Exactly one metric layer (default_layer, or the first added) starts
        visible; the others start hidden until toggled.
        """
        self._check_open()
        if not self._groups:
            raise MapBuildError("No layer groups to build a map from")

        names = [g.name for g in self._groups]
        default_layer = default_layer or names[0]
        if default_layer not in names:
            raise MapBuildError(f"Default layer '{default_layer}' not in layer groups: {names}")

        if not self._base_layers:
            self.add_base_layer("CartoDB positron", "Light")

        minx, miny, maxx, maxy = self._bounds()
        center = [(miny + maxy) / 2, (minx + maxx) / 2]
        logger.debug(f"  📍 Map center: {center[0]:.4f}, {center[1]:.4f}")

        m = folium.Map(location=center, zoom_start=self.zoom_start, tiles=None, **self.map_kwargs)

        for i, spec in enumerate(self._base_layers):
            folium.TileLayer(
                tiles=spec.tiles,
                name=spec.name,
                attr=spec.attr,
                overlay=False,
                control=True,
                show=(i == 0),
            ).add_to(m)

        feature_groups = []
        for group in self._groups:
            fg = folium.FeatureGroup(
                name=group.name,
                overlay=True,
                control=True,
                show=(group.name == default_layer),
            )
            group.geojson.add_to(fg)
            fg.add_to(m)
            feature_groups.append((fg, group))

        for fg, group in feature_groups:
            m.add_child(BoundLegend(fg, group.legend))

        folium.LayerControl(collapsed=False).add_to(m)
        m.fit_bounds([[miny, minx], [maxy, maxx]])

        if self.title:
            title_html = f"""
            <h3 align="center" style="font-size:20px; color: #333333; margin-top:10px;">
            <b>{html.escape(self.title)}</b>
            </h3>
            """
            m.get_root().html.add_child(folium.Element(title_html))

        self._built = True
        logger.success(f"  ✅ Built map with {len(names)} metric layers (default: {default_layer})")

        return RenderedMap(
            map=m,
            layer_names=tuple(names),
            base_layer_names=tuple(b.name for b in self._base_layers),
            default_layer=default_layer,
            effective_bins={g.name: g.scale.n_bins for g in self._groups},
        )
