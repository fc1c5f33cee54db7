import pytest
import numpy as np
import xarray as xr

from sdm_background.errors import InvalidParameterError
from sdm_background.extent import StudyExtent
from sdm_background.occurrence.sampling import BackgroundSampler, BiasLayerParams
from sdm_background.raster.density import (
    BackgroundMethod,
    TransformMethod,
    calculate_floor_probability,
    occurrence_density_surface,
    transform_point_counts,
)
from sdm_background.raster.grid import make_model_grid


@pytest.fixture
def config() -> dict:
    return {
        "resolution": 0.5,
        "n_points": 30,
    }


@pytest.fixture
def study_extent() -> StudyExtent:
    return StudyExtent(0, 10, 0, 10)


@pytest.fixture
def template(study_extent, config) -> xr.DataArray:
    return make_model_grid(study_extent, config["resolution"])


@pytest.fixture
def clustered_occurrences(config) -> np.ndarray:
    """Occurrences clustered in the north-west corner of the study extent."""
    rng = np.random.default_rng(0)
    lon = rng.uniform(1, 3, config["n_points"])
    lat = rng.uniform(7, 9, config["n_points"])
    return np.column_stack([lon, lat])


def test_make_model_grid(study_extent):
    grid = make_model_grid(study_extent, 0.5)

    assert grid.shape == (20, 20)
    assert grid.rio.crs == "EPSG:4326"
    assert grid.rio.bounds() == pytest.approx(study_extent.bounds)
    # y runs north to south
    assert grid.y.values[0] > grid.y.values[-1]


def test_make_model_grid_adjusts_resolution():
    grid = make_model_grid(StudyExtent(0, 1, 0, 1), 0.3)
    assert grid.shape == (3, 3)
    assert grid.rio.bounds() == pytest.approx((0, 0, 1, 1))


def test_make_model_grid_invalid_resolution(study_extent):
    with pytest.raises(InvalidParameterError):
        make_model_grid(study_extent, 0)


def test_transform_point_counts():
    counts = np.array([[0.0, 1.0], [4.0, 9.0]])

    assert transform_point_counts(counts, TransformMethod.SQRT).tolist() == [[0, 1], [2, 3]]
    assert transform_point_counts(counts, TransformMethod.PRESENCE).tolist() == [[0, 1], [1, 1]]
    assert np.allclose(transform_point_counts(counts, TransformMethod.LOG), np.log1p(counts))
    assert transform_point_counts(counts, TransformMethod.CAP, cap_percentile=50).max() < 9
    ranks = transform_point_counts(counts, TransformMethod.RANK)
    assert ranks.argmax() == counts.argmax()
    # Nothing to cap leaves the counts unchanged
    zeros = np.zeros((2, 2))
    assert transform_point_counts(zeros, TransformMethod.CAP).tolist() == zeros.tolist()


def test_unknown_transform_method():
    with pytest.raises(InvalidParameterError):
        transform_point_counts(np.ones((2, 2)), "cube")


def test_calculate_floor_probability():
    density = xr.DataArray(np.array([[0.0, 2.0], [4.0, 8.0]]), dims=["y", "x"])

    assert calculate_floor_probability(density, BackgroundMethod.CONTRAST, 0.25) == pytest.approx(2.0)
    assert calculate_floor_probability(density, BackgroundMethod.SCALE, 0.5) == pytest.approx(4.0)
    assert calculate_floor_probability(density, BackgroundMethod.FIXED, 1.5) == pytest.approx(1.5)
    assert calculate_floor_probability(density, BackgroundMethod.PERCENTILE, 50) == pytest.approx(3.0)
    assert calculate_floor_probability(density, BackgroundMethod.BINARY, 0.3) == 0
    # Contrast is clamped to [0, 1]
    assert calculate_floor_probability(density, BackgroundMethod.CONTRAST, 1.5) == pytest.approx(8.0)
    with pytest.raises(InvalidParameterError):
        calculate_floor_probability(density, "median", 0.3)


def test_density_surface_shape(template, clustered_occurrences):
    surface = occurrence_density_surface(clustered_occurrences, template, sigma=1.0)

    assert isinstance(surface, xr.DataArray)
    assert surface.shape == template.shape
    assert surface.rio.crs == template.rio.crs
    assert float(surface.min()) >= 0


def test_orientation_of_density_surface(template, clustered_occurrences):
    """The densest cell should be in the north-west, where the occurrences are."""
    surface = occurrence_density_surface(
        clustered_occurrences, template, sigma=1.0, transform_method=TransformMethod.PRESENCE
    )
    peak = surface.where(surface == surface.max(), drop=True)
    assert float(peak.x.values[0]) < 5
    assert float(peak.y.values[0]) > 5


def test_background_points_follow_density(study_extent, template, clustered_occurrences):
    """With no floor every background point should be close to an occurrence."""
    surface = occurrence_density_surface(
        clustered_occurrences,
        template,
        sigma=1.0,
        transform_method=TransformMethod.PRESENCE,
        background_value=0.0,
    )
    points = BackgroundSampler().generate(
        100, study_extent, "bias_layer", BiasLayerParams(surface), seed=1
    )

    assert len(points) == 100
    for lon, lat in points:
        distances = np.hypot(clustered_occurrences[:, 0] - lon, clustered_occurrences[:, 1] - lat)
        assert distances.min() < 3.5


def test_density_surface_keeps_missing_cells(template, clustered_occurrences):
    template = template.copy(data=template.values.copy())
    template.values[0, 0] = np.nan
    surface = occurrence_density_surface(clustered_occurrences, template)

    assert np.isnan(surface.values[0, 0])
    assert not np.isnan(surface.values[1, 1])


def test_binary_background_method(template, clustered_occurrences):
    surface = occurrence_density_surface(
        clustered_occurrences, template, background_method=BackgroundMethod.BINARY
    )
    assert set(np.unique(surface.values)) <= {0.0, 1.0}


def test_density_surface_needs_occurrences_in_grid(template):
    with pytest.raises(InvalidParameterError):
        occurrence_density_surface([(50.0, 50.0)], template)
    with pytest.raises(InvalidParameterError):
        occurrence_density_surface([], template)


def test_density_surface_on_covariate_stack(template, clustered_occurrences):
    """A multi-band template gives a 2D surface, missing wherever any band is missing."""
    second = template.copy(data=np.ones(template.shape))
    second.values[0, 0] = np.nan
    stack = xr.concat([template, second], dim="band").assign_coords(band=[1, 2])

    surface = occurrence_density_surface(clustered_occurrences, stack, sigma=1.0)

    assert surface.dims == ("y", "x")
    assert surface.shape == template.shape
    assert surface.rio.crs == template.rio.crs
    assert np.isnan(surface.values[0, 0])
    assert np.isnan(surface.values).sum() == 1
