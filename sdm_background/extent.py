from dataclasses import dataclass
from typing import Tuple, Union
import logging

import numpy as np
import geopandas as gpd
from shapely.geometry import Polygon, box

from sdm_background.errors import InvalidParameterError

GEOGRAPHIC_CRS = "EPSG:4326"


@dataclass(frozen=True)
class StudyExtent:
    """
    A rectangular study area in WGS84 longitude / latitude degrees.

    Args:
        min_lon: Western edge.
        max_lon: Eastern edge.
        min_lat: Southern edge.
        max_lat: Northern edge.
    """

    min_lon: float
    max_lon: float
    min_lat: float
    max_lat: float

    def __post_init__(self):
        for name in ("min_lon", "max_lon", "min_lat", "max_lat"):
            value = getattr(self, name)
            try:
                # Store plain floats so numpy scalars don't leak into the output
                number = float(value)
            except (TypeError, ValueError):
                raise InvalidParameterError(f"{name} must be a number, got {value!r}") from None
            if not np.isfinite(number):
                raise InvalidParameterError(f"{name} must be a finite number, got {value}")
            object.__setattr__(self, name, number)

        if self.min_lon >= self.max_lon:
            raise InvalidParameterError(
                f"Degenerate extent: min_lon ({self.min_lon}) must be less than max_lon ({self.max_lon})"
            )
        if self.min_lat >= self.max_lat:
            raise InvalidParameterError(
                f"Degenerate extent: min_lat ({self.min_lat}) must be less than max_lat ({self.max_lat})"
            )
        if self.min_lon < -180 or self.max_lon > 180:
            raise InvalidParameterError(
                f"Longitudes must lie within [-180, 180], got [{self.min_lon}, {self.max_lon}]"
            )
        if self.min_lat < -90 or self.max_lat > 90:
            raise InvalidParameterError(
                f"Latitudes must lie within [-90, 90], got [{self.min_lat}, {self.max_lat}]"
            )

    @classmethod
    def from_bounds(cls, bounds: Tuple[float, float, float, float]) -> "StudyExtent":
        """Build an extent from (minx, miny, maxx, maxy), the shapely/geopandas bounds order."""
        minx, miny, maxx, maxy = bounds
        return cls(min_lon=minx, max_lon=maxx, min_lat=miny, max_lat=maxy)

    @classmethod
    def from_geodataframe(cls, gdf: gpd.GeoDataFrame) -> "StudyExtent":
        """Build an extent from the total bounds of a GeoDataFrame, reprojecting to WGS84 if needed."""
        if gdf.empty:
            raise InvalidParameterError("Cannot derive a study extent from an empty GeoDataFrame")
        if gdf.crs is not None and gdf.crs != GEOGRAPHIC_CRS:
            logging.info(f"Re-projecting boundary from {gdf.crs} to {GEOGRAPHIC_CRS}")
            gdf = gdf.to_crs(GEOGRAPHIC_CRS)
        return cls.from_bounds(tuple(gdf.total_bounds))

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(minx, miny, maxx, maxy)"""
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)

    @property
    def width(self) -> float:
        return self.max_lon - self.min_lon

    @property
    def height(self) -> float:
        return self.max_lat - self.min_lat

    def to_polygon(self) -> Polygon:
        return box(*self.bounds)

    def contains(self, lon, lat) -> np.ndarray:
        """Inclusive point-in-extent test, vectorised over numpy arrays."""
        lon = np.asarray(lon, dtype=float)
        lat = np.asarray(lat, dtype=float)
        return (
            (lon >= self.min_lon)
            & (lon <= self.max_lon)
            & (lat >= self.min_lat)
            & (lat <= self.max_lat)
        )


ExtentLike = Union[StudyExtent, Tuple[float, float, float, float]]


def as_extent(extent: ExtentLike) -> StudyExtent:
    """Accept a StudyExtent or a (min_lon, max_lon, min_lat, max_lat) tuple."""
    if isinstance(extent, StudyExtent):
        return extent
    try:
        min_lon, max_lon, min_lat, max_lat = extent
    except (TypeError, ValueError):
        raise InvalidParameterError(
            f"Extent must be a StudyExtent or (min_lon, max_lon, min_lat, max_lat), got {extent!r}"
        )
    return StudyExtent(min_lon, max_lon, min_lat, max_lat)
