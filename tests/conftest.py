import pytest
from loguru import logger

from storymap.config_loader import Config
from tests.sample_data import create_sample_metrics, create_sample_regions


@pytest.fixture(autouse=True)
def reset_logging():
    """CLI tests replace loguru handlers; drop whatever they left behind."""
    yield
    logger.remove()


@pytest.fixture
def sample_regions():
    return create_sample_regions()


@pytest.fixture
def sample_metrics():
    return create_sample_metrics()


@pytest.fixture
def input_files(tmp_path):
    """Write the AB/DD metrics and AB/DD/ZZ polygons to disk."""
    metrics_path = tmp_path / "metrics.csv"
    metrics_path.write_text(
        'code,name,population,sales\nAB,Aberdeen,1000,£500\nDD,Dùn Dè,2000,"£1,500"\n',
        encoding="utf-8",
    )

    boundaries_path = tmp_path / "areas.geojson"
    regions = create_sample_regions().rename(
        columns={"region_code": "PostArea", "region_name": "AreaName"}
    )
    regions.to_file(boundaries_path, driver="GeoJSON")

    return metrics_path, boundaries_path


@pytest.fixture
def config_data(input_files):
    metrics_path, boundaries_path = input_files
    return {
        "project_name": "Test storymap",
        "input_files": {
            "metrics_csv": metrics_path.name,
            "boundaries": boundaries_path.name,
        },
        "columns": {
            "metrics_code": "code",
            "metrics_name": "name",
            "boundaries_code": "PostArea",
            "boundaries_name": "AreaName",
        },
        "regions": ["AB", "DD"],
        "metrics": [
            {"column": "population", "label": "Population", "palette": "Blues", "bins": 5},
            {
                "column": "sales",
                "label": "Sales",
                "palette": "YlGn",
                "bins": 5,
                "currency": True,
                "prefix": "£",
            },
        ],
        "output": {"html": "out/map.html"},
    }


@pytest.fixture
def config(config_data, tmp_path):
    return Config.from_dict(config_data, project_root=tmp_path)
