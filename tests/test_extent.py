import pytest
import numpy as np
import geopandas as gpd
from shapely.geometry import box

from sdm_background.errors import InvalidParameterError
from sdm_background.extent import StudyExtent, as_extent


def test_extent_bounds_order():
    extent = StudyExtent(min_lon=-3, max_lon=-1, min_lat=53, max_lat=54)
    assert extent.bounds == (-3.0, 53.0, -1.0, 54.0)
    assert extent.width == 2
    assert extent.height == 1


def test_from_bounds_round_trip():
    extent = StudyExtent.from_bounds((-3, 53, -1, 54))
    assert extent == StudyExtent(-3, -1, 53, 54)
    assert extent.to_polygon().equals(box(-3, 53, -1, 54))


@pytest.mark.parametrize(
    "bounds",
    [
        (1, 1, 0, 1),  # zero width
        (0, 1, 2, 1),  # inverted latitude
        (-190, 0, 0, 1),  # longitude out of range
        (0, 1, -91, 0),  # latitude out of range
        (0, np.nan, 0, 1),
        ("a", 1, 0, 1),  # not a number
        (None, 1, 0, 1),
    ],
)
def test_invalid_extent(bounds):
    with pytest.raises(InvalidParameterError):
        StudyExtent(*bounds)


def test_contains_is_inclusive():
    extent = StudyExtent(0, 1, 0, 1)
    lon = np.array([0.0, 1.0, 0.5, 1.5])
    lat = np.array([0.0, 1.0, 0.5, 0.5])
    assert extent.contains(lon, lat).tolist() == [True, True, True, False]


def test_from_geodataframe_reprojects():
    """Bounds of a projected boundary (British National Grid) come back in degrees."""
    boundary = gpd.GeoDataFrame(geometry=[box(420000, 380000, 440000, 400000)], crs="EPSG:27700")
    extent = StudyExtent.from_geodataframe(boundary)

    assert -2 < extent.min_lon < extent.max_lon < -1
    assert 53 < extent.min_lat < extent.max_lat < 54


def test_from_empty_geodataframe():
    with pytest.raises(InvalidParameterError):
        StudyExtent.from_geodataframe(gpd.GeoDataFrame(geometry=[], crs="EPSG:4326"))


def test_as_extent():
    extent = StudyExtent(-10, 10, -10, 10)
    assert as_extent(extent) is extent
    assert as_extent((-10, 10, -10, 10)) == extent
    with pytest.raises(InvalidParameterError):
        as_extent((1, 2, 3))
