import logging
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
import xarray as xr
import rioxarray as rxr  # Required for .rio accessor, even if not directly called
from rioxarray.exceptions import RioXarrayError
from rasterio.transform import from_bounds

from sdm_background.errors import AlignmentError, InvalidParameterError
from sdm_background.extent import StudyExtent, GEOGRAPHIC_CRS

CovariateGrid = Union[xr.DataArray, xr.Dataset]


@dataclass(frozen=True)
class CellTable:
    """Flattened centres and weights of the cells that can be sampled."""

    x: np.ndarray
    y: np.ndarray
    weights: np.ndarray
    res_x: float
    res_y: float

    def __len__(self) -> int:
        return len(self.weights)


def make_model_grid(extent: StudyExtent, resolution: float) -> xr.DataArray:
    """Generate an empty model grid covering the study extent.

    The resolution is adjusted per axis so a whole number of cells tiles the extent exactly.

    Args:
        extent: The study extent.
        resolution: Target cell size in degrees.

    Returns:
        A zero-filled DataArray with dims (y, x), y descending, in EPSG:4326.
    """
    if resolution <= 0:
        raise InvalidParameterError(f"Grid resolution must be positive, got {resolution}")

    width = max(1, int(round(extent.width / resolution)))
    height = max(1, int(round(extent.height / resolution)))
    res_x = extent.width / width
    res_y = extent.height / height
    if not np.isclose(res_x, resolution) or not np.isclose(res_y, resolution):
        logging.debug(
            f"Adjusted grid resolution from {resolution} to ({res_x:.6f}, {res_y:.6f}) to fit the extent"
        )

    x_coords = extent.min_lon + res_x * (np.arange(width) + 0.5)
    y_coords = extent.max_lat - res_y * (np.arange(height) + 0.5)

    grid = xr.DataArray(
        np.zeros((height, width)),
        coords={"y": y_coords, "x": x_coords},
        dims=["y", "x"],
    )
    grid = grid.rio.write_crs(GEOGRAPHIC_CRS)
    transform = from_bounds(
        west=extent.min_lon,
        south=extent.min_lat,
        east=extent.max_lon,
        north=extent.max_lat,
        width=width,
        height=height,
    )
    grid.rio.write_transform(transform, inplace=True)
    return grid


def squeeze_band(da: xr.DataArray) -> xr.DataArray:
    """Drop a length-1 band dimension, as produced by rioxarray.open_rasterio."""
    if "band" in da.dims and da.sizes["band"] == 1:
        da = da.squeeze("band", drop=True)
    return da


def _spatial_dims(obj: CovariateGrid, name: str) -> tuple:
    try:
        return obj.rio.y_dim, obj.rio.x_dim
    except RioXarrayError as e:
        raise AlignmentError(f"Could not find the spatial dimensions of the {name}: {e}")


def _missing_mask(da: xr.DataArray) -> np.ndarray:
    """Cells that are NaN or equal to the declared nodata value, reduced to (y, x)."""
    y_dim, x_dim = _spatial_dims(da, "raster")
    missing = da.isnull()
    nodata = da.rio.nodata
    if nodata is not None and not np.isnan(nodata):
        missing = missing | (da == nodata)
    other_dims = [d for d in missing.dims if d not in (y_dim, x_dim)]
    if other_dims:
        missing = missing.any(dim=other_dims)
    return missing.transpose(y_dim, x_dim).values


def check_alignment(bias_surface: xr.DataArray, extent: StudyExtent) -> None:
    """
    Raise AlignmentError unless the bias surface covers exactly the study extent.

    Edges may differ by up to half a cell. A declared CRS must be geographic.
    """
    crs = bias_surface.rio.crs
    if crs is not None and not crs.is_geographic:
        raise AlignmentError(
            f"Bias surface CRS {crs} is not geographic; reproject it to {GEOGRAPHIC_CRS} first."
        )
    _spatial_dims(bias_surface, "bias surface")
    try:
        left, bottom, right, top = bias_surface.rio.bounds()
        res_x, res_y = bias_surface.rio.resolution()
    except RioXarrayError as e:
        raise AlignmentError(f"Could not determine the bias surface geometry: {e}")

    tol_x = abs(res_x) / 2
    tol_y = abs(res_y) / 2
    mismatches = []
    for name, raster_value, extent_value, tol in [
        ("min_lon", left, extent.min_lon, tol_x),
        ("max_lon", right, extent.max_lon, tol_x),
        ("min_lat", bottom, extent.min_lat, tol_y),
        ("max_lat", top, extent.max_lat, tol_y),
    ]:
        if abs(raster_value - extent_value) > tol:
            mismatches.append(f"{name}: raster {raster_value:.6f} vs extent {extent_value:.6f}")
    if mismatches:
        raise AlignmentError("Bias surface is not aligned to the study extent (" + "; ".join(mismatches) + ")")


def check_covariate_alignment(bias_surface: xr.DataArray, covariates: CovariateGrid) -> None:
    """Raise AlignmentError unless the covariates sit on the same x/y coordinates as the bias surface."""
    bias_y, bias_x = _spatial_dims(bias_surface, "bias surface")
    cov_y, cov_x = _spatial_dims(covariates, "covariate grid")
    for bias_dim, cov_dim, axis in [(bias_x, cov_x, "x"), (bias_y, cov_y, "y")]:
        bias_coords = bias_surface[bias_dim].values
        cov_coords = covariates[cov_dim].values
        if bias_coords.shape != cov_coords.shape or not np.allclose(bias_coords, cov_coords):
            raise AlignmentError(
                f"Covariate grid {axis} coordinates do not match the bias surface "
                f"({len(cov_coords)} vs {len(bias_coords)} cells)"
            )


def covariate_missing_mask(covariates: CovariateGrid) -> np.ndarray:
    """(y, x) mask of cells where any covariate is missing."""
    if isinstance(covariates, xr.Dataset):
        masks = [_missing_mask(covariates[var]) for var in covariates.data_vars]
        if not masks:
            raise InvalidParameterError("Covariate dataset has no data variables.")
        return np.logical_or.reduce(masks)
    return _missing_mask(covariates)


def cell_table(
    bias_surface: xr.DataArray,
    covariates: Optional[CovariateGrid] = None,
) -> CellTable:
    """
    Flatten a bias surface into the table of cells that can be sampled.

    Cells with a missing bias value, or with any missing covariate, are dropped.

    Args:
        bias_surface: Non-negative relative sampling weights.
        covariates: Optional covariate grid on the same coordinates.

    Returns:
        CellTable of cell centres and raw (unnormalised) weights.
    """
    bias_surface = squeeze_band(bias_surface)
    y_dim, x_dim = _spatial_dims(bias_surface, "bias surface")
    other_dims = [d for d in bias_surface.dims if d not in (y_dim, x_dim)]
    if other_dims:
        raise AlignmentError(f"Bias surface must be two dimensional, found extra dims {other_dims}")

    missing = _missing_mask(bias_surface)
    if covariates is not None:
        if isinstance(covariates, xr.DataArray):
            covariates = squeeze_band(covariates)
        check_covariate_alignment(bias_surface, covariates)
        missing = missing | covariate_missing_mask(covariates)

    values = bias_surface.transpose(y_dim, x_dim).values.astype(float)
    valid = ~missing
    if not np.isfinite(values[valid]).all():
        raise InvalidParameterError("Bias surface weights must be finite.")
    if np.any(values[valid] < 0):
        raise InvalidParameterError("Bias surface weights must be non-negative.")

    coords_x, coords_y = np.meshgrid(bias_surface[x_dim].values, bias_surface[y_dim].values)
    res_x, res_y = bias_surface.rio.resolution()

    logging.debug(f"{valid.sum()} of {valid.size} cells are available for sampling")
    return CellTable(
        x=coords_x[valid].astype(float),
        y=coords_y[valid].astype(float),
        weights=values[valid],
        res_x=abs(float(res_x)),
        res_y=abs(float(res_y)),
    )
