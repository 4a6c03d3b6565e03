import folium
import pytest

from storymap.config_loader import MetricSpec
from storymap.currency import metric_values
from storymap.errors import MapBuildError
from storymap.join import join_metrics
from storymap.layers import (
    DEFAULT_STYLE,
    NO_DATA_LABEL,
    BoundLegend,
    MapBuilder,
    RaiseOnHover,
    compose_metric_layer,
)
from storymap.regions import reproject_regions
from storymap.scales import build_scale

SALES = MetricSpec(column="sales", label="Sales", palette="YlGn", bins=5, currency=True, prefix="£")
POPULATION = MetricSpec(column="population", label="Population", palette="Blues", bins=5)


@pytest.fixture
def enriched(sample_regions, sample_metrics):
    regions = reproject_regions(sample_regions, "EPSG:4326")
    enriched = join_metrics(regions, sample_metrics)
    for metric in (SALES, POPULATION):
        enriched[metric.value_column] = metric_values(enriched[metric.column], metric.currency)
    return enriched


def make_group(enriched, metric):
    shade = build_scale(enriched[metric.value_column], metric.palette, metric.bins)
    return compose_metric_layer(enriched, metric, shade, shade.reversed())


def feature_for(geojson, code):
    for feature in geojson.data["features"]:
        if feature["properties"]["region_code"] == code:
            return feature
    raise KeyError(code)


def child_of_type(element, cls):
    return next(c for c in element._children.values() if isinstance(c, cls))


def test_fill_color_follows_metric_value(enriched):
    group = make_group(enriched, SALES)
    scale = group.scale

    ab = feature_for(group.geojson, "AB")
    dd = feature_for(group.geojson, "DD")
    assert group.geojson.style_function(ab)["fillColor"] == scale(500)
    assert group.geojson.style_function(dd)["fillColor"] == scale(1500)


def test_missing_value_uses_no_data_color(enriched):
    group = make_group(enriched, SALES)
    zz = feature_for(group.geojson, "ZZ")

    assert zz["properties"]["sales_value"] is None
    assert group.geojson.style_function(zz)["fillColor"] == group.scale.na_color
    assert zz["properties"]["sales_display"] == NO_DATA_LABEL


def test_fixed_stroke_and_heavier_highlight(enriched):
    group = make_group(enriched, SALES)
    feature = feature_for(group.geojson, "AB")

    style = group.geojson.style_function(feature)
    highlight = group.geojson.highlight_function(feature)
    assert style["weight"] == DEFAULT_STYLE["stroke_weight"]
    assert style["color"] == DEFAULT_STYLE["stroke_color"]
    assert highlight["weight"] > style["weight"]
    assert highlight["fillOpacity"] > style["fillOpacity"]


def test_hovered_polygon_is_raised(enriched):
    group = make_group(enriched, SALES)
    assert any(isinstance(child, RaiseOnHover) for child in group.geojson._children.values())


def test_label_and_popup_fields(enriched):
    group = make_group(enriched, SALES)

    tooltip = child_of_type(group.geojson, folium.GeoJsonTooltip)
    popup = child_of_type(group.geojson, folium.GeoJsonPopup)
    assert tooltip.fields == ["region_name", "sales_display"]
    assert popup.fields == ["region_name", "sales_display", "region_code"]
    ab = feature_for(group.geojson, "AB")
    assert ab["properties"]["sales_display"] == "£500"
    assert ab["properties"]["region_name"] == "Aberdeen"


def test_legend_lists_largest_first_with_no_data_row(enriched):
    group = make_group(enriched, SALES)
    labels = [label for label, _ in group.legend.entries]

    assert labels[-1] == NO_DATA_LABEL
    assert labels[0].endswith(f"£{group.scale.breaks[-1]:,.0f}")
    assert group.legend.entries[0][1] == group.scale.colors[-1]
    assert group.legend.position == "bottomright"


def test_builder_shows_exactly_one_metric_layer(enriched):
    builder = MapBuilder(title="Test")
    builder.add_base_layer("CartoDB positron", "Light").add_base_layer("OpenStreetMap", "Street")
    builder.add_layer_group(make_group(enriched, POPULATION))
    builder.add_layer_group(make_group(enriched, SALES))
    rendered = builder.build(default_layer="Sales")

    groups = [c for c in rendered.map._children.values() if isinstance(c, folium.FeatureGroup)]
    assert [g.layer_name for g in groups] == ["Population", "Sales"]
    assert [g.show for g in groups] == [False, True]
    assert all(g.overlay for g in groups)
    assert rendered.default_layer == "Sales"
    assert rendered.layer_names == ("Population", "Sales")


def test_builder_base_layers_are_exclusive(enriched):
    builder = MapBuilder()
    builder.add_base_layer("CartoDB positron", "Light").add_base_layer("OpenStreetMap", "Street")
    builder.add_layer_group(make_group(enriched, SALES))
    rendered = builder.build()

    tiles = [c for c in rendered.map._children.values() if isinstance(c, folium.TileLayer)]
    assert [t.layer_name for t in tiles] == ["Light", "Street"]
    assert not any(t.overlay for t in tiles)
    assert [t.show for t in tiles] == [True, False]
    assert rendered.base_layer_names == ("Light", "Street")
    assert any(isinstance(c, folium.LayerControl) for c in rendered.map._children.values())


def test_builder_defaults_to_first_group_and_base_layer(enriched):
    builder = MapBuilder()
    builder.add_layer_group(make_group(enriched, POPULATION))
    builder.add_layer_group(make_group(enriched, SALES))
    rendered = builder.build()

    assert rendered.default_layer == "Population"
    assert rendered.base_layer_names == ("Light",)


def test_each_legend_is_bound_to_its_own_layer(enriched):
    builder = MapBuilder()
    builder.add_layer_group(make_group(enriched, POPULATION))
    builder.add_layer_group(make_group(enriched, SALES))
    rendered = builder.build()

    groups = {c.layer_name: c for c in rendered.map._children.values() if isinstance(c, folium.FeatureGroup)}
    legends = [c for c in rendered.map._children.values() if isinstance(c, BoundLegend)]
    assert [legend.layer for legend in legends] == [groups["Population"], groups["Sales"]]
    assert len({legend.position for legend in legends}) == 1


def test_toggle_reuses_the_same_legend_and_styles(enriched):
    group = make_group(enriched, SALES)
    feature = feature_for(group.geojson, "DD")
    builder = MapBuilder()
    builder.add_layer_group(group)
    rendered = builder.build()

    html = rendered.to_html()
    legend = next(c for c in rendered.map._children.values() if isinstance(c, BoundLegend))
    name = legend.get_name()
    # one control object, re-added on every "add" and removed on every "remove"
    assert html.count(f"var {name} = L.control(") == 1
    assert f"{name}.addTo(" in html
    assert f"{name}.remove()" in html
    assert group.geojson.style_function(feature) == group.geojson.style_function(feature)


def test_build_is_final(enriched):
    builder = MapBuilder()
    builder.add_layer_group(make_group(enriched, SALES))
    builder.build()

    with pytest.raises(MapBuildError):
        builder.build()
    with pytest.raises(MapBuildError):
        builder.add_base_layer("OpenStreetMap")


def test_build_rejects_bad_input(enriched):
    with pytest.raises(MapBuildError):
        MapBuilder().build()

    builder = MapBuilder()
    builder.add_layer_group(make_group(enriched, SALES))
    with pytest.raises(MapBuildError):
        builder.add_layer_group(make_group(enriched, SALES))
    with pytest.raises(MapBuildError):
        builder.build(default_layer="Profit")
