import logging
import numbers
import warnings
from dataclasses import dataclass, field
from enum import StrEnum
from typing import ClassVar, Optional, Sequence, Tuple, Union

import numpy as np
import geopandas as gpd
import xarray as xr

from sdm_background.errors import InvalidParameterError, PartialSampleWarning
from sdm_background.extent import ExtentLike, StudyExtent, GEOGRAPHIC_CRS, as_extent
from sdm_background.geo import OccurrenceIndex, OccurrenceLike, as_coordinates
from sdm_background.raster.grid import CovariateGrid, cell_table, check_alignment

DEFAULT_MAX_ATTEMPTS_MULTIPLIER = 50


class SamplingMode(StrEnum):
    RANDOM = "random"
    BIAS_LAYER = "bias_layer"
    GEO_EXCLUSION = "geo_exclusion"
    TARGETED_GROUP = "targeted_group"


@dataclass(frozen=True)
class RandomParams:
    """Uniform sampling over the study extent. Takes no parameters."""

    mode: ClassVar[SamplingMode] = SamplingMode.RANDOM


@dataclass(frozen=True, eq=False)
class BiasLayerParams:
    """
    Weighted sampling of grid cells.

    Args:
        bias_surface: Non-negative relative sampling weight per cell, aligned to the extent.
        covariates: Optional covariate grid; cells with any missing covariate are never sampled.
        replace: Sample cells with replacement. If False each cell is used at most once.
        jitter: Place points uniformly within the chosen cell rather than at its centre.
    """

    mode: ClassVar[SamplingMode] = SamplingMode.BIAS_LAYER

    bias_surface: xr.DataArray
    covariates: Optional[CovariateGrid] = None
    replace: bool = True
    jitter: bool = False


@dataclass(frozen=True, eq=False)
class GeoExclusionParams:
    """
    Uniform sampling restricted to a buffer around known presences.

    Args:
        radius_km: Points must lie within this great-circle distance of at least one occurrence.
        occurrences: The occurrence points to buffer around.
        min_distance_km: Points must also be at least this far from every occurrence.
    """

    mode: ClassVar[SamplingMode] = SamplingMode.GEO_EXCLUSION

    radius_km: float
    occurrences: OccurrenceLike
    min_distance_km: float = 0.0


@dataclass(frozen=True, eq=False)
class TargetedGroupParams:
    """
    Target-group background: presences of related taxa recorded under the same sampling effort.

    Args:
        groups: One occurrence set per related taxon.
    """

    mode: ClassVar[SamplingMode] = SamplingMode.TARGETED_GROUP

    groups: Sequence[OccurrenceLike]


ModeParams = Union[RandomParams, BiasLayerParams, GeoExclusionParams, TargetedGroupParams]


@dataclass(frozen=True)
class BackgroundPointSet:
    """
    Background points drawn by a single sampling run.

    Attributes:
        points: Ordered (lon, lat) pairs.
        requested: The number of points that was asked for.
        mode: The sampling mode used.
        warning: Set when fewer points than requested could be drawn.
    """

    points: Tuple[Tuple[float, float], ...]
    requested: int
    mode: SamplingMode
    warning: Optional[PartialSampleWarning] = field(default=None, compare=False)

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self):
        return iter(self.points)

    @property
    def shortfall(self) -> int:
        return self.requested - len(self.points)

    @property
    def is_partial(self) -> bool:
        return self.shortfall > 0

    def coordinates(self) -> np.ndarray:
        """(n, 2) array of (lon, lat)."""
        if not self.points:
            return np.empty((0, 2), dtype=float)
        return np.array(self.points, dtype=float)

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        """Points as a GeoDataFrame in EPSG:4326, flagged as background with presence = 0."""
        coords = self.coordinates()
        bg_points_gdf = gpd.GeoDataFrame(
            geometry=gpd.points_from_xy(coords[:, 0], coords[:, 1]),
            crs=GEOGRAPHIC_CRS,
        )
        bg_points_gdf["presence"] = 0
        return bg_points_gdf


def _validate_count(count) -> int:
    if isinstance(count, bool) or not isinstance(count, numbers.Integral):
        raise InvalidParameterError(f"count must be an integer, got {count!r}")
    if count <= 0:
        raise InvalidParameterError(f"count must be positive, got {count}")
    return int(count)


def _resolve_params(mode: Union[SamplingMode, str], mode_params: Optional[ModeParams]) -> ModeParams:
    try:
        mode = SamplingMode(mode)
    except ValueError:
        raise InvalidParameterError(
            f"Unknown sampling mode {mode!r}; expected one of {[m.value for m in SamplingMode]}"
        )
    if mode_params is None:
        if mode == SamplingMode.RANDOM:
            return RandomParams()
        raise InvalidParameterError(f"Sampling mode '{mode}' requires mode parameters.")
    if getattr(mode_params, "mode", None) != mode:
        raise InvalidParameterError(
            f"Parameters of type {type(mode_params).__name__} do not match sampling mode '{mode}'"
        )
    return mode_params


def uniform_points(
    rng: np.random.Generator, extent: StudyExtent, size: int
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Draw points uniformly over the surface area of the extent.

    Longitude is uniform; latitude is uniform in sin(latitude) so high-latitude
    strips are not over-sampled. Longitudes are drawn before latitudes.
    """
    lon = rng.uniform(extent.min_lon, extent.max_lon, size)
    sin_lat = rng.uniform(np.sin(np.radians(extent.min_lat)), np.sin(np.radians(extent.max_lat)), size)
    lat = np.degrees(np.arcsin(sin_lat))
    # Guard the edges against round-off in the sin/arcsin round trip
    lat = np.clip(lat, extent.min_lat, extent.max_lat)
    return lon, lat


class BackgroundSampler:
    """
    Generate background (pseudo-absence) points for presence-only SDM.

    Args:
        max_attempts_multiplier: In geo_exclusion mode at most this many candidates per
            requested point are drawn before giving up.
    """

    def __init__(self, max_attempts_multiplier: int = DEFAULT_MAX_ATTEMPTS_MULTIPLIER):
        if (
            isinstance(max_attempts_multiplier, bool)
            or not isinstance(max_attempts_multiplier, numbers.Integral)
            or max_attempts_multiplier <= 0
        ):
            raise InvalidParameterError(
                f"max_attempts_multiplier must be a positive integer, got {max_attempts_multiplier!r}"
            )
        self.max_attempts_multiplier = int(max_attempts_multiplier)

    def generate(
        self,
        count: int,
        extent: ExtentLike,
        mode: Union[SamplingMode, str] = SamplingMode.RANDOM,
        mode_params: Optional[ModeParams] = None,
        seed: Optional[int] = None,
    ) -> BackgroundPointSet:
        """
        Generate background points.

        Args:
            count: Number of points requested.
            extent: The study extent, or (min_lon, max_lon, min_lat, max_lat).
            mode: One of random, bias_layer, geo_exclusion, targeted_group.
            mode_params: The parameter record matching `mode`. May be omitted for random.
            seed: Seed for the random number generator. The same seed and inputs always
                give the same points.

        Returns:
            BackgroundPointSet. When a constraint prevents drawing `count` points the set is
            shorter, a PartialSampleWarning is issued and attached to the result.

        Raises:
            InvalidParameterError: The request is invalid.
            AlignmentError: The bias surface or covariates do not line up with the extent.
        """
        count = _validate_count(count)
        extent = as_extent(extent)
        params = _resolve_params(mode, mode_params)
        if seed is not None and (isinstance(seed, bool) or not isinstance(seed, numbers.Integral)):
            raise InvalidParameterError(f"seed must be an integer, got {seed!r}")

        rng = np.random.default_rng(seed)
        logging.info(f"Sampling {count} background points using '{params.mode}' mode")

        if isinstance(params, RandomParams):
            lon, lat, reason = self._sample_random(rng, count, extent)
        elif isinstance(params, BiasLayerParams):
            lon, lat, reason = self._sample_bias_layer(rng, count, extent, params)
        elif isinstance(params, GeoExclusionParams):
            lon, lat, reason = self._sample_geo_exclusion(rng, count, extent, params)
        else:
            lon, lat, reason = self._sample_targeted_group(rng, count, extent, params)

        points = tuple(zip(lon.tolist(), lat.tolist()))
        warning = None
        if len(points) < count:
            warning = PartialSampleWarning(count, len(points), reason)
            logging.warning(str(warning))
            warnings.warn(warning, stacklevel=2)
        else:
            logging.info(f"Generated {len(points)} background points.")

        return BackgroundPointSet(points=points, requested=count, mode=params.mode, warning=warning)

    def _sample_random(self, rng, count, extent):
        lon, lat = uniform_points(rng, extent, count)
        return lon, lat, ""

    def _sample_bias_layer(self, rng, count, extent, params: BiasLayerParams):
        check_alignment(params.bias_surface, extent)
        cells = cell_table(params.bias_surface, params.covariates)

        positive = cells.weights > 0
        n_positive = int(positive.sum())
        if n_positive == 0:
            return np.empty(0), np.empty(0), "bias surface has no cells with positive weight"

        probabilities = cells.weights / cells.weights.sum()
        reason = ""
        if params.replace:
            chosen = rng.choice(len(cells), size=count, replace=True, p=probabilities)
        elif n_positive < count:
            logging.warning(
                f"Number of available cells ({n_positive}) is less than requested background points ({count})."
            )
            # All positive cells, in a seeded order
            chosen = rng.permutation(np.flatnonzero(positive))
            reason = f"only {n_positive} cells have positive weight"
        else:
            chosen = rng.choice(len(cells), size=count, replace=False, p=probabilities)

        lon = cells.x[chosen]
        lat = cells.y[chosen]
        if params.jitter:
            lon = lon + rng.uniform(-cells.res_x / 2, cells.res_x / 2, len(chosen))
            lat = lat + rng.uniform(-cells.res_y / 2, cells.res_y / 2, len(chosen))
        # Edge cells may overhang the extent by up to half a cell
        lon = np.clip(lon, extent.min_lon, extent.max_lon)
        lat = np.clip(lat, extent.min_lat, extent.max_lat)
        return lon, lat, reason

    def _sample_geo_exclusion(self, rng, count, extent, params: GeoExclusionParams):
        if params.radius_km < 0:
            raise InvalidParameterError(f"radius_km must be non-negative, got {params.radius_km}")
        if params.min_distance_km < 0:
            raise InvalidParameterError(f"min_distance_km must be non-negative, got {params.min_distance_km}")
        if params.min_distance_km > params.radius_km:
            raise InvalidParameterError(
                f"min_distance_km ({params.min_distance_km}) must not exceed radius_km ({params.radius_km})"
            )
        occurrences = as_coordinates(params.occurrences)
        if len(occurrences) == 0:
            raise InvalidParameterError("geo_exclusion mode requires at least one occurrence point.")

        index = OccurrenceIndex(occurrences)
        max_attempts = self.max_attempts_multiplier * count
        accepted_lon, accepted_lat = [], []
        n_accepted = 0
        attempts = 0
        while n_accepted < count and attempts < max_attempts:
            batch_size = min(count, max_attempts - attempts)
            lon, lat = uniform_points(rng, extent, batch_size)
            attempts += batch_size
            mask = index.within_buffer(lon, lat, params.radius_km, params.min_distance_km)
            take = min(int(mask.sum()), count - n_accepted)
            accepted_lon.append(lon[mask][:take])
            accepted_lat.append(lat[mask][:take])
            n_accepted += take

        logging.debug(f"Accepted {n_accepted} of {attempts} candidate points")
        lon = np.concatenate(accepted_lon) if accepted_lon else np.empty(0)
        lat = np.concatenate(accepted_lat) if accepted_lat else np.empty(0)
        reason = ""
        if n_accepted < count:
            reason = f"attempt budget of {max_attempts} candidates exhausted within {params.radius_km} km buffers"
        return lon, lat, reason

    def _sample_targeted_group(self, rng, count, extent, params: TargetedGroupParams):
        groups = [as_coordinates(group) for group in params.groups]
        if not groups or all(len(group) == 0 for group in groups):
            raise InvalidParameterError("targeted_group mode requires at least one occurrence point.")

        union = np.concatenate(groups)
        # Drop exact duplicates, keeping first-seen order
        _, first_index = np.unique(union, axis=0, return_index=True)
        union = union[np.sort(first_index)]

        inside = extent.contains(union[:, 0], union[:, 1])
        if not inside.all():
            logging.info(f"Dropping {int((~inside).sum())} target-group points outside the study extent")
            union = union[inside]

        reason = ""
        if len(union) > count:
            chosen = np.sort(rng.choice(len(union), size=count, replace=False))
            union = union[chosen]
        elif len(union) < count:
            reason = f"target-group union holds only {len(union)} points"
        return union[:, 0], union[:, 1], reason
