# Command Line Interface for sdm-background
import logging
from pathlib import Path
from typing import List, Optional

import typer
from typing_extensions import Annotated

from sdm_background.commands.generate_background_points import generate_background_points
from sdm_background.errors import AlignmentError, InvalidParameterError
from sdm_background.extent import StudyExtent
from sdm_background.occurrence.sampling import SamplingMode
from sdm_background.utils.io import load_sampling_config
from sdm_background.utils.logging_utils import setup_logging

app = typer.Typer(
    name="sdm-background",
    help="Generate background (pseudo-absence) points for presence-only species distribution models",
    add_completion=False,
)


@app.callback()
def main() -> None:
    """
    Background point tools for species distribution modelling.
    """


def parse_extent(value: Optional[str]) -> Optional[StudyExtent]:
    """Parse 'min_lon,max_lon,min_lat,max_lat'."""
    if value is None:
        return None
    try:
        min_lon, max_lon, min_lat, max_lat = (float(v) for v in value.split(","))
    except ValueError:
        raise typer.BadParameter("Extent must be 'min_lon,max_lon,min_lat,max_lat'.")
    try:
        return StudyExtent(min_lon, max_lon, min_lat, max_lat)
    except InvalidParameterError as e:
        raise typer.BadParameter(str(e))


@app.command()
def generate(
    output_path: Annotated[
        Path,
        typer.Option(
            "--output", "-o",
            help="Where to write the background points (.parquet or GeoJSON).",
            writable=True, resolve_path=True, dir_okay=False,
        )
    ] = Path("data/processed/background_points.geojson"),
    mode: Annotated[
        Optional[SamplingMode],
        typer.Option(case_sensitive=False, help="Sampling mode. Defaults to the config value.")
    ] = None,
    count: Annotated[
        Optional[int],
        typer.Option(help="Number of background points to generate. Defaults to the config value.")
    ] = None,
    extent: Annotated[
        Optional[str],
        typer.Option(help="Study extent as 'min_lon,max_lon,min_lat,max_lat'.")
    ] = None,
    boundary_path: Annotated[
        Optional[Path],
        typer.Option("--boundary", help="Vector file whose bounds define the study extent.", exists=True, readable=True, resolve_path=True)
    ] = None,
    occurrence_path: Annotated[
        Optional[Path],
        typer.Option("--occurrences", help="Occurrence data (GeoJSON, GPKG, Parquet or CSV).", exists=True, readable=True, resolve_path=True)
    ] = None,
    bias_raster_path: Annotated[
        Optional[Path],
        typer.Option("--bias-raster", help="Bias surface raster for bias_layer mode.", exists=True, readable=True, resolve_path=True)
    ] = None,
    covariates_path: Annotated[
        Optional[Path],
        typer.Option("--covariates", help="Covariate raster; cells with missing values are not sampled.", exists=True, readable=True, resolve_path=True)
    ] = None,
    group_paths: Annotated[
        Optional[List[Path]],
        typer.Option("--group", help="Occurrence file of a related taxon (repeat for each taxon).", exists=True, readable=True, resolve_path=True)
    ] = None,
    density_bias: Annotated[
        bool,
        typer.Option("--density-bias", help="Build the bias surface from occurrence density.")
    ] = False,
    radius_km: Annotated[
        Optional[float],
        typer.Option(help="Buffer radius around occurrences in km (geo_exclusion).")
    ] = None,
    min_distance_km: Annotated[
        Optional[float],
        typer.Option(help="Minimum distance from any occurrence in km (geo_exclusion).")
    ] = None,
    replace: Annotated[
        bool,
        typer.Option("--replace/--no-replace", help="Sample bias cells with replacement.")
    ] = True,
    jitter: Annotated[
        bool,
        typer.Option("--jitter", help="Spread points within their bias cell instead of using cell centres.")
    ] = False,
    seed: Annotated[
        Optional[int],
        typer.Option(help="Random seed. Defaults to the config value.")
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", help="YAML config file.", exists=True, readable=True, resolve_path=True)
    ] = None,
    save_parameters: Annotated[
        bool,
        typer.Option("--save-parameters", help="Write a JSON record of the run parameters.")
    ] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose logging.")] = False,
) -> None:
    """
    Generate background points for a presence-only species distribution model.
    """
    setup_logging(verbose=verbose)
    study_extent = parse_extent(extent)

    try:
        sampling_config = load_sampling_config(config_path)
        output_path, background_points = generate_background_points(
            output_path=output_path,
            count=count if count is not None else sampling_config["count"],
            mode=mode if mode is not None else SamplingMode(sampling_config["mode"]),
            extent=study_extent,
            boundary_path=boundary_path,
            occurrence_path=occurrence_path,
            bias_raster_path=bias_raster_path,
            covariates_path=covariates_path,
            group_paths=group_paths or [],
            density_bias=density_bias,
            radius_km=radius_km if radius_km is not None else sampling_config["radius_km"],
            min_distance_km=min_distance_km if min_distance_km is not None else sampling_config["min_distance_km"],
            replace=replace,
            jitter=jitter,
            seed=seed if seed is not None else sampling_config["seed"],
            max_attempts_multiplier=sampling_config["max_attempts_multiplier"],
            config_path=config_path,
            save_parameters=save_parameters,
        )
    except (InvalidParameterError, AlignmentError) as e:
        logging.error(str(e))
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Wrote {len(background_points)} of {background_points.requested} background points to {output_path}")
    if background_points.is_partial:
        typer.echo(f"Warning: {background_points.warning}", err=True)


if __name__ == "__main__":
    app()
