from pathlib import Path

import folium
import pytest

from storymap.config_loader import Config
from storymap.errors import RegionMapError
from storymap.pipeline import (
    build_metric_scales,
    build_storymap,
    load_inputs,
    prepare_regions,
    render_to_file,
)


def test_prepare_regions_end_to_end(config):
    metrics_df, boundaries = load_inputs(config)
    enriched = prepare_regions(config, metrics_df, boundaries)

    # ZZ is outside the allow-list
    assert sorted(enriched["region_code"]) == ["AB", "DD"]
    assert enriched.crs.to_epsg() == 4326


def test_metric_values_parsed_from_currency_text(config):
    metrics_df, boundaries = load_inputs(config)
    enriched = prepare_regions(config, metrics_df, boundaries)
    sales = config.get_metrics()[1]

    shade, legend = build_metric_scales(enriched, sales, "#bdbdbd")
    values = enriched.set_index("region_code")["sales_value"]

    assert values["AB"] == 500
    assert values["DD"] == 1500
    assert shade.domain[0] <= 500 and shade.domain[1] >= 1500
    assert legend.descending and not shade.descending
    assert legend.colors == shade.colors


def test_build_storymap(config):
    rendered = build_storymap(config)

    assert rendered.layer_names == ("Population", "Sales")
    assert rendered.default_layer == "Population"
    shown = [
        c.layer_name
        for c in rendered.map._children.values()
        if isinstance(c, folium.FeatureGroup) and c.show
    ]
    assert shown == ["Population"]


def test_default_layer_from_config(config_data, tmp_path):
    config_data["map"] = {"default_layer": "Sales"}
    rendered = build_storymap(Config.from_dict(config_data, tmp_path))

    assert rendered.default_layer == "Sales"


def test_unknown_default_layer_falls_back_to_first(config):
    rendered = build_storymap(config, default_layer="Profit")

    assert rendered.default_layer == "Population"


def test_malformed_value_skips_only_that_layer(config):
    metrics_path = config.get_input_path("metrics_csv")
    metrics_path.write_text(
        'code,name,population,sales\nAB,Aberdeen,1000,"£1,2x5"\nDD,Dundee,2000,£1\n',
        encoding="utf-8",
    )

    rendered = build_storymap(config)
    assert rendered.layer_names == ("Population",)


def test_all_layers_failing_is_an_error(config):
    metrics_path = config.get_input_path("metrics_csv")
    metrics_path.write_text(
        "code,name,population,sales\nAB,Aberdeen,lots,£?\nDD,Dundee,,\n",
        encoding="utf-8",
    )

    with pytest.raises(RegionMapError):
        build_storymap(config)


def test_render_to_file(config, tmp_path):
    output_path = render_to_file(config)

    assert output_path == tmp_path.resolve() / "out" / "map.html"
    html = output_path.read_text(encoding="utf-8")
    assert "Population" in html
    assert "Sales" in html


def test_render_to_explicit_path(config, tmp_path):
    target = tmp_path / "custom" / "widget.html"
    assert render_to_file(config, output_path=target) == target
    assert target.exists()


def test_sample_project_layers_stay_within_requested_bins():
    repo_config = Config(Path(__file__).resolve().parent.parent / "config.yaml")
    requested = {m.label: m.bins for m in repo_config.get_metrics()}

    rendered = build_storymap(repo_config)

    assert rendered.layer_names == tuple(requested)
    for name, effective in rendered.effective_bins.items():
        assert 1 <= effective <= requested[name], name
    assert rendered.effective_bins["Tax"] < requested["Tax"]
