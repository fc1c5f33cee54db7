import logging
from typing import Sequence, Tuple, Union

import numpy as np
import geopandas as gpd
from sklearn.neighbors import BallTree

from sdm_background.errors import InvalidParameterError
from sdm_background.extent import GEOGRAPHIC_CRS

# Mean Earth radius (IUGG)
EARTH_RADIUS_KM = 6371.0088

OccurrenceLike = Union[gpd.GeoDataFrame, np.ndarray, Sequence[Tuple[float, float]]]


def as_coordinates(points: OccurrenceLike) -> np.ndarray:
    """
    Coerce occurrence points to an (n, 2) float array of (lon, lat).

    Args:
        points: A point GeoDataFrame, an (n, 2) array or a sequence of (lon, lat) pairs.

    Returns:
        A new (n, 2) array. The input is never modified.
    """
    if isinstance(points, gpd.GeoDataFrame):
        if len(points) == 0:
            return np.empty((0, 2), dtype=float)
        if not all(points.geometry.geom_type == "Point"):
            raise InvalidParameterError("Occurrence data must contain point geometries only.")
        if points.crs is not None and points.crs != GEOGRAPHIC_CRS:
            logging.info(f"Re-projecting occurrences from {points.crs} to {GEOGRAPHIC_CRS}")
            points = points.to_crs(GEOGRAPHIC_CRS)
        return np.column_stack([points.geometry.x.values, points.geometry.y.values]).astype(float)

    coords = np.array(points, dtype=float)
    if coords.size == 0:
        return np.empty((0, 2), dtype=float)
    if coords.ndim != 2 or coords.shape[1] != 2:
        raise InvalidParameterError(
            f"Occurrence coordinates must have shape (n, 2), got {coords.shape}"
        )
    if not np.all(np.isfinite(coords)):
        raise InvalidParameterError("Occurrence coordinates must be finite.")
    return coords


def haversine_km(lon1, lat1, lon2, lat2) -> np.ndarray:
    """Great-circle distance in kilometres between points given in degrees."""
    lon1, lat1, lon2, lat2 = map(np.radians, (lon1, lat1, lon2, lat2))
    dlon = lon2 - lon1
    dlat = lat2 - lat1
    a = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0, 1)))


class OccurrenceIndex:
    """
    Nearest-occurrence lookups on the sphere.

    Wraps a haversine BallTree built over the occurrence coordinates.
    """

    def __init__(self, occurrences: np.ndarray):
        if len(occurrences) == 0:
            raise InvalidParameterError("Cannot index an empty set of occurrences.")
        # BallTree's haversine metric expects (lat, lon) in radians
        self._tree = BallTree(np.radians(occurrences[:, ::-1]), metric="haversine")

    def nearest_km(self, lon: np.ndarray, lat: np.ndarray) -> np.ndarray:
        """Distance in km from each query point to its nearest occurrence."""
        query = np.radians(np.column_stack([lat, lon]))
        distance, _ = self._tree.query(query, k=1)
        return distance[:, 0] * EARTH_RADIUS_KM

    def within_buffer(
        self,
        lon: np.ndarray,
        lat: np.ndarray,
        radius_km: float,
        min_distance_km: float = 0.0,
    ) -> np.ndarray:
        """
        Boolean mask of query points lying inside the union of occurrence buffers.

        A point is inside when its nearest occurrence is within `radius_km`.
        With `min_distance_km` > 0 it must also be at least that far from every occurrence.
        """
        nearest = self.nearest_km(lon, lat)
        mask = nearest <= radius_km
        if min_distance_km > 0:
            mask &= nearest >= min_distance_km
        return mask
