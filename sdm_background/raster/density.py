import logging
from enum import StrEnum

import numpy as np
import xarray as xr
import rioxarray as rxr  # Required for .rio accessor, even if not directly called
from scipy.ndimage import gaussian_filter

from sdm_background.errors import InvalidParameterError
from sdm_background.geo import OccurrenceLike, as_coordinates
from sdm_background.raster.grid import squeeze_band


class TransformMethod(StrEnum):
    LOG = "log"
    SQRT = "sqrt"
    PRESENCE = "presence"
    CAP = "cap"
    RANK = "rank"


class BackgroundMethod(StrEnum):
    CONTRAST = "contrast"
    PERCENTILE = "percentile"
    SCALE = "scale"
    FIXED = "fixed"
    BINARY = "binary"


def transform_point_counts(
    point_counts: np.ndarray,
    transform_method: TransformMethod,
    cap_percentile: float = 90.0,
) -> np.ndarray:
    """
    Rescale per-cell occurrence counts so a few heavily recorded cells do not dominate the surface.

    Args:
        point_counts: 2D numpy array of occurrence counts per cell.
        transform_method: How to rescale the counts.
        cap_percentile: Percentile of the non-zero counts used by the 'cap' method.

    Returns:
        Array of the same shape as point_counts.
    """
    if transform_method == TransformMethod.LOG:
        return np.log1p(point_counts)
    if transform_method == TransformMethod.SQRT:
        return np.sqrt(point_counts)
    if transform_method == TransformMethod.PRESENCE:
        return (point_counts > 0).astype(float)
    if transform_method == TransformMethod.CAP:
        non_zero = point_counts[point_counts > 0]
        if len(non_zero) == 0:
            return point_counts
        return np.minimum(point_counts, np.percentile(non_zero, cap_percentile))
    if transform_method == TransformMethod.RANK:
        from scipy.stats import rankdata

        ranks = rankdata(point_counts.ravel(), method="average") / point_counts.size
        return ranks.reshape(point_counts.shape)
    raise InvalidParameterError(f"Unknown transform method: {transform_method}")


def calculate_floor_probability(
    density_array: xr.DataArray,
    background_method: BackgroundMethod,
    background_value: float,
) -> float:
    """
    Weight given to every valid cell, so cells far from any occurrence can still be sampled.

    'contrast' and 'scale' are fractions of the peak density ('contrast' is clamped to [0, 1]),
    'percentile' is a percentile of the valid cells, 'fixed' is used as given and 'binary' has no floor.
    """
    peak = float(density_array.max().item())

    if background_method == BackgroundMethod.CONTRAST:
        floor_probability = peak * min(max(background_value, 0.0), 1.0)
    elif background_method == BackgroundMethod.SCALE:
        floor_probability = peak * background_value
    elif background_method == BackgroundMethod.PERCENTILE:
        values = density_array.values
        floor_probability = float(np.percentile(values[~np.isnan(values)], background_value))
    elif background_method == BackgroundMethod.FIXED:
        floor_probability = float(background_value)
    elif background_method == BackgroundMethod.BINARY:
        floor_probability = 0.0
    else:
        raise InvalidParameterError(f"Unknown background method: {background_method}")

    if floor_probability < 0:
        raise InvalidParameterError(f"Floor weight must be non-negative, got {floor_probability}")
    logging.debug(f"Density surface floor ({background_method}): {floor_probability:.8f}")
    return floor_probability


def occurrence_density_surface(
    occurrences: OccurrenceLike,
    template: xr.DataArray,
    sigma: float = 1.5,
    transform_method: TransformMethod = TransformMethod.LOG,
    background_method: BackgroundMethod = BackgroundMethod.CONTRAST,
    background_value: float = 0.3,
    cap_percentile: float = 90.0,
) -> xr.DataArray:
    """Build a bias surface from the smoothed density of occurrence records.

    Occurrences are counted into the cells of the template grid, transformed, smoothed with a
    Gaussian kernel and floored. Cells that are missing in the template stay missing.

    Args:
        occurrences: Occurrence points used to estimate sampling effort.
        template: Grid to build the surface on (e.g. from make_model_grid or a covariate layer).
        sigma: Sigma value for Gaussian smoothing, in cells.
        transform_method: Method to transform occurrence counts.
        background_method: Method for setting the minimum weight.
        background_value: Value to use with background_method.
        cap_percentile: Percentile for 'cap' transform_method.

    Returns:
        A non-negative DataArray on the template grid, usable as a bias surface.
    """
    coords = as_coordinates(occurrences)
    if len(coords) == 0:
        raise InvalidParameterError("Cannot build a density surface from an empty set of occurrences.")

    template = squeeze_band(template)
    y_dim, x_dim = template.rio.y_dim, template.rio.x_dim
    # A covariate stack shares one grid; a cell is valid only where every layer has data
    other_dims = [dim for dim in template.dims if dim not in (y_dim, x_dim)]
    present = template.notnull()
    if other_dims:
        present = present.all(dim=other_dims)
        template = template.isel({dim: 0 for dim in other_dims}, drop=True)
    template = template.transpose(y_dim, x_dim)
    present = present.transpose(y_dim, x_dim)
    x_values = template[x_dim].values
    y_values = template[y_dim].values
    res_x, res_y = (abs(r) for r in template.rio.resolution())

    # Histogram bins should be pixel edges, ascending on both axes
    x_sorted = np.sort(x_values)
    y_sorted = np.sort(y_values)
    hist_bins_x = np.append(x_sorted - res_x / 2, x_sorted[-1] + res_x / 2)
    hist_bins_y = np.append(y_sorted - res_y / 2, y_sorted[-1] + res_y / 2)

    point_counts, _, _ = np.histogram2d(coords[:, 0], coords[:, 1], bins=(hist_bins_x, hist_bins_y))
    n_in_grid = int(point_counts.sum())
    logging.info(f"Using {n_in_grid} of {len(coords)} occurrence points (within grid bounds) to generate density surface.")
    if n_in_grid == 0:
        raise InvalidParameterError("No occurrence points found within the grid bounds.")

    # Always transpose to (y, x) for raster alignment
    point_counts = point_counts.T
    if x_values[0] > x_values[-1]:
        point_counts = np.fliplr(point_counts)
    if y_values[0] > y_values[-1]:
        point_counts = np.flipud(point_counts)

    point_counts = transform_point_counts(point_counts, transform_method, cap_percentile)

    logging.debug(f"Applying Gaussian smoothing with sigma={sigma}")
    smoothed_counts = gaussian_filter(point_counts, sigma=sigma)

    density_array = xr.DataArray(
        smoothed_counts,
        coords={y_dim: y_values, x_dim: x_values},
        dims=[y_dim, x_dim],
        name="occurrence_density",
    )
    if template.rio.crs is not None:
        density_array = density_array.rio.write_crs(template.rio.crs)
    density_array.rio.write_transform(template.rio.transform(), inplace=True)
    density_array.rio.write_nodata(np.nan, inplace=True)

    # Plain mask without spatial_ref so the density CRS survives .where
    valid = xr.DataArray(present.values, coords={y_dim: y_values, x_dim: x_values}, dims=[y_dim, x_dim])
    density_array = density_array.where(valid)

    if background_method == BackgroundMethod.BINARY:
        density_array = (density_array > 1e-9).astype(float).where(valid)

    floor_probability = calculate_floor_probability(density_array, background_method, background_value)
    return density_array.clip(min=floor_probability)
