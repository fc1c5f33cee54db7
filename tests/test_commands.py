import json

import pytest
import numpy as np
import geopandas as gpd
import xarray as xr
import yaml

from sdm_background.commands.generate_background_points import generate_background_points
from sdm_background.errors import InvalidParameterError
from sdm_background.extent import StudyExtent
from sdm_background.occurrence.sampling import SamplingMode
from sdm_background.raster.grid import make_model_grid


@pytest.fixture
def study_extent() -> StudyExtent:
    return StudyExtent(0, 2, 0, 2)


@pytest.fixture
def config_path(tmp_path):
    """Density surface on a 0.5 degree grid with no floor, so points stay near the occurrences."""
    path = tmp_path / "config.yaml"
    with open(path, "w") as f:
        yaml.safe_dump(
            {"density": {"resolution": 0.5, "sigma": 0.5, "transform_method": "presence", "background_value": 0.0}},
            f,
        )
    return path


@pytest.fixture
def occurrence_path(tmp_path):
    """Occurrences in the north-west quarter of the study extent."""
    path = tmp_path / "occurrences.geojson"
    gpd.GeoDataFrame(
        geometry=gpd.points_from_xy([0.2, 0.3, 0.6, 0.7], [1.8, 1.3, 1.7, 1.2]), crs="EPSG:4326"
    ).to_file(path, driver="GeoJSON")
    return path


@pytest.fixture
def covariate_stack_path(tmp_path, study_extent):
    """Two-band covariate raster; band 2 is missing in the top-left cell."""
    grid = make_model_grid(study_extent, 0.5)
    second = np.ones(grid.shape)
    second[0, 0] = np.nan
    stack = xr.concat(
        [grid.copy(data=np.ones(grid.shape)), grid.copy(data=second)], dim="band"
    ).assign_coords(band=[1, 2])
    path = tmp_path / "covariates.tif"
    stack.rio.to_raster(path)
    return path


def test_density_bias_on_model_grid(tmp_path, study_extent, config_path, occurrence_path):
    output_path, points = generate_background_points(
        tmp_path / "background.geojson",
        count=40,
        mode=SamplingMode.BIAS_LAYER,
        extent=study_extent,
        occurrence_path=occurrence_path,
        density_bias=True,
        seed=1,
        config_path=config_path,
        save_parameters=True,
    )

    assert len(points) == 40
    written = gpd.read_file(output_path)
    assert len(written) == 40
    # Cell centres of the 0.5 degree grid
    assert set(np.round(written.geometry.x % 0.5, 6)) == {0.25}
    assert (written.geometry.y > 1).mean() > 0.5

    with open(tmp_path / "background-parameters.json") as f:
        parameters = json.load(f)
    assert parameters["density_bias"] is True


def test_density_bias_on_covariate_stack(tmp_path, study_extent, config_path, occurrence_path, covariate_stack_path):
    """The covariate stack is the density template and its missing cell is never sampled."""
    _, points = generate_background_points(
        tmp_path / "background.parquet",
        count=60,
        mode=SamplingMode.BIAS_LAYER,
        extent=study_extent,
        occurrence_path=occurrence_path,
        covariates_path=covariate_stack_path,
        density_bias=True,
        seed=2,
        config_path=config_path,
    )

    coords = points.coordinates()
    assert len(coords) == 60
    at_missing_cell = np.isclose(coords[:, 0], 0.25) & np.isclose(coords[:, 1], 1.75)
    assert not at_missing_cell.any()


def test_density_bias_requires_occurrences(tmp_path, study_extent, config_path):
    with pytest.raises(InvalidParameterError):
        generate_background_points(
            tmp_path / "background.geojson",
            count=5,
            mode=SamplingMode.BIAS_LAYER,
            extent=study_extent,
            density_bias=True,
            config_path=config_path,
        )
