import logging
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import geopandas as gpd

from sdm_background.errors import InvalidParameterError
from sdm_background.extent import StudyExtent
from sdm_background.occurrence.sampling import (
    BackgroundPointSet,
    BackgroundSampler,
    BiasLayerParams,
    GeoExclusionParams,
    RandomParams,
    SamplingMode,
    TargetedGroupParams,
)
from sdm_background.raster.density import occurrence_density_surface
from sdm_background.raster.grid import make_model_grid
from sdm_background.utils.io import (
    load_density_config,
    load_occurrences,
    load_raster,
    write_parameters,
    write_points,
)


def resolve_extent(
    extent: Optional[StudyExtent] = None,
    boundary_path: Optional[Path] = None,
    bias_raster_path: Optional[Path] = None,
) -> StudyExtent:
    """Use the explicit extent, else the bounds of the boundary file, else those of the bias raster."""
    if extent is not None:
        return extent
    if boundary_path is not None:
        return StudyExtent.from_geodataframe(gpd.read_file(boundary_path))
    if bias_raster_path is not None:
        return StudyExtent.from_bounds(load_raster(bias_raster_path).rio.bounds())
    logging.error("No study extent given. Pass an extent, a boundary or a bias raster.")
    raise InvalidParameterError("No study extent given. Pass an extent, a boundary or a bias raster.")


def generate_background_points(
    output_path: Path,
    count: int,
    mode: SamplingMode = SamplingMode.RANDOM,
    extent: Optional[StudyExtent] = None,
    boundary_path: Optional[Path] = None,
    occurrence_path: Optional[Path] = None,
    bias_raster_path: Optional[Path] = None,
    covariates_path: Optional[Path] = None,
    group_paths: Sequence[Path] = (),
    density_bias: bool = False,
    radius_km: float = 50.0,
    min_distance_km: float = 0.0,
    replace: bool = True,
    jitter: bool = False,
    seed: Optional[int] = None,
    max_attempts_multiplier: int = 50,
    config_path: Optional[Path] = None,
    save_parameters: bool = False,
) -> Tuple[Path, BackgroundPointSet]:
    """
    A file interface around BackgroundSampler.generate.

    Args:
        output_path: Where to write the points (.parquet or GeoJSON).
        count: Number of background points to generate.
        mode: Sampling mode.
        extent: Study extent. Falls back to the bounds of boundary_path, then bias_raster_path.
        boundary_path: Vector file whose bounds define the study extent.
        occurrence_path: Occurrences of the target species (geo_exclusion, density bias).
        bias_raster_path: Bias surface raster (bias_layer).
        covariates_path: Covariate raster; cells with missing values are not sampled (bias_layer).
        group_paths: One occurrence file per related taxon (targeted_group).
        density_bias: Build the bias surface from occurrence density instead of reading a raster.
        radius_km: Buffer radius around occurrences (geo_exclusion).
        min_distance_km: Minimum distance from any occurrence (geo_exclusion).
        replace: Sample bias cells with replacement.
        jitter: Spread points within their bias cell.
        seed: Random seed, used as given.
        max_attempts_multiplier: Candidate budget per requested point (geo_exclusion).
        config_path: YAML config holding density surface settings.
        save_parameters: Write a JSON record of the parameters next to the output.

    Returns:
        Tuple of the output path and the generated BackgroundPointSet.
    """
    mode = SamplingMode(mode)
    extent = resolve_extent(extent, boundary_path, bias_raster_path)
    logging.info(f"Study extent: {extent}")

    if mode == SamplingMode.RANDOM:
        params = RandomParams()
    elif mode == SamplingMode.BIAS_LAYER:
        covariates = load_raster(covariates_path) if covariates_path is not None else None
        if density_bias:
            if occurrence_path is None:
                raise InvalidParameterError("A density bias surface needs occurrence data.")
            density_config = load_density_config(config_path)
            template = covariates if covariates is not None else make_model_grid(extent, density_config["resolution"])
            bias_surface = occurrence_density_surface(
                load_occurrences(occurrence_path),
                template,
                sigma=density_config["sigma"],
                transform_method=density_config["transform_method"],
                background_method=density_config["background_method"],
                background_value=density_config["background_value"],
                cap_percentile=density_config["cap_percentile"],
            )
        elif bias_raster_path is not None:
            bias_surface = load_raster(bias_raster_path)
        else:
            raise InvalidParameterError("bias_layer mode needs a bias raster or density_bias with occurrences.")
        params = BiasLayerParams(bias_surface=bias_surface, covariates=covariates, replace=replace, jitter=jitter)
    elif mode == SamplingMode.GEO_EXCLUSION:
        if occurrence_path is None:
            raise InvalidParameterError("geo_exclusion mode needs occurrence data.")
        params = GeoExclusionParams(
            radius_km=radius_km,
            occurrences=load_occurrences(occurrence_path),
            min_distance_km=min_distance_km,
        )
    else:
        if not group_paths:
            raise InvalidParameterError("targeted_group mode needs at least one occurrence file.")
        params = TargetedGroupParams(groups=[load_occurrences(path) for path in group_paths])

    sampler = BackgroundSampler(max_attempts_multiplier=max_attempts_multiplier)
    background_points = sampler.generate(count, extent, mode, params, seed=seed)

    output_path = write_points(background_points.to_geodataframe(), output_path)

    if save_parameters:
        parameters: Dict = {
            "mode": mode.value,
            "count": count,
            "returned": len(background_points),
            "seed": seed,
            "extent": list(extent.bounds),
            "max_attempts_multiplier": max_attempts_multiplier,
        }
        if mode == SamplingMode.BIAS_LAYER:
            parameters.update({"density_bias": density_bias, "replace": replace, "jitter": jitter})
        elif mode == SamplingMode.GEO_EXCLUSION:
            parameters.update({"radius_km": radius_km, "min_distance_km": min_distance_km})
        write_parameters(parameters, output_path.with_name(output_path.stem + "-parameters.json"))

    return output_path, background_points
