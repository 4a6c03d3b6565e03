import geopandas as gpd
import pytest

from storymap.errors import ReprojectionError
from storymap.regions import filter_regions, normalize_regions, reproject_regions
from tests.sample_data import create_sample_regions


def test_filter_keeps_only_allow_listed_codes(sample_regions):
    filtered = filter_regions(sample_regions, ["AB", "DD"])

    assert sorted(filtered["region_code"]) == ["AB", "DD"]
    assert set(filtered["region_code"]) <= {"AB", "DD"}


def test_filter_moves_geometry_with_attributes(sample_regions):
    filtered = filter_regions(sample_regions, ["DD"])
    original = sample_regions.loc[sample_regions["region_code"] == "DD"].geometry.iloc[0]

    assert filtered.geometry.iloc[0].equals(original)
    assert filtered["region_name"].iloc[0] == "Area DD"


def test_filter_does_not_mutate_input(sample_regions):
    before = sample_regions.copy()
    filter_regions(sample_regions, ["AB"])

    assert len(sample_regions) == len(before)
    assert sample_regions.equals(before)


def test_filter_is_case_sensitive(sample_regions):
    assert filter_regions(sample_regions, ["ab", "dd"]).empty


def test_filter_compares_codes_as_strings():
    regions = create_sample_regions(codes=(1, 2, 3))
    filtered = filter_regions(regions, ["2"])

    assert filtered["region_code"].tolist() == ["2"]


def test_reproject_to_single_crs(sample_regions):
    reprojected = reproject_regions(sample_regions, "EPSG:4326")

    assert reprojected.crs.to_epsg() == 4326
    minx, miny, maxx, maxy = reprojected.total_bounds
    assert -180 <= minx <= maxx <= 180
    assert -90 <= miny <= maxy <= 90
    # the input keeps its original CRS
    assert sample_regions.crs.to_epsg() == 27700


def test_reproject_without_source_crs_fails(sample_regions):
    unknown = gpd.GeoDataFrame(sample_regions.drop(columns="geometry"), geometry=list(sample_regions.geometry))
    assert unknown.crs is None

    with pytest.raises(ReprojectionError):
        reproject_regions(unknown, "EPSG:4326")


def test_reproject_to_unknown_crs_fails(sample_regions):
    with pytest.raises(ReprojectionError):
        reproject_regions(sample_regions, "EPSG:999999")


def test_reproject_already_in_target_is_a_copy():
    regions = create_sample_regions(crs="EPSG:4326")
    result = reproject_regions(regions, "EPSG:4326")

    assert result is not regions
    assert result.crs == regions.crs


def test_normalize_filters_then_reprojects(sample_regions):
    normalized = normalize_regions(sample_regions, ["AB", "DD"], "EPSG:4326")

    assert len(normalized) == 2
    assert "ZZ" not in set(normalized["region_code"])
    assert normalized.crs.to_epsg() == 4326
