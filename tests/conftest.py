import pytest
import numpy as np
import geopandas as gpd
import xarray as xr

from sdm_background.extent import StudyExtent
from sdm_background.raster.grid import make_model_grid


@pytest.fixture
def extent() -> StudyExtent:
    """A 20 x 20 degree study extent around the origin."""
    return StudyExtent(min_lon=-10, max_lon=10, min_lat=-10, max_lat=10)


@pytest.fixture
def small_extent() -> StudyExtent:
    return StudyExtent(min_lon=0, max_lon=2, min_lat=0, max_lat=2)


@pytest.fixture
def simple_bias_surface(small_extent: StudyExtent) -> xr.DataArray:
    """A 2x2 bias surface with weights 1, 2 (top row) and 3, 4 (bottom row)."""
    grid = make_model_grid(small_extent, resolution=1.0)
    return grid.copy(data=np.array([[1.0, 2.0], [3.0, 4.0]]))


@pytest.fixture
def occurrence_gdf() -> gpd.GeoDataFrame:
    """Two presences inside the default extent."""
    return gpd.GeoDataFrame(
        {"species": ["Myotis daubentonii", "Myotis daubentonii"]},
        geometry=gpd.points_from_xy([0.0, 5.0], [0.0, 5.0]),
        crs="EPSG:4326",
    )
