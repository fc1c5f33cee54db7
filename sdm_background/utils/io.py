import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import geopandas as gpd
import pandas as pd
import rioxarray as rxr
import xarray as xr
import yaml
from pyhere import here

from sdm_background.errors import InvalidParameterError
from sdm_background.extent import GEOGRAPHIC_CRS
from sdm_background.occurrence.sampling import DEFAULT_MAX_ATTEMPTS_MULTIPLIER, SamplingMode
from sdm_background.raster.density import BackgroundMethod, TransformMethod

DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    "sampling": {
        "count": 10000,
        "mode": SamplingMode.RANDOM.value,
        "seed": None,
        "max_attempts_multiplier": DEFAULT_MAX_ATTEMPTS_MULTIPLIER,
        "radius_km": 50.0,
        "min_distance_km": 0.0,
    },
    "density": {
        "resolution": 0.1,
        "sigma": 1.5,
        "transform_method": TransformMethod.LOG.value,
        "background_method": BackgroundMethod.CONTRAST.value,
        "background_value": 0.3,
        "cap_percentile": 90.0,
    },
}

# Column names tried, in order, when reading occurrences from CSV
LON_COLUMNS = ("decimalLongitude", "longitude", "lon", "x")
LAT_COLUMNS = ("decimalLatitude", "latitude", "lat", "y")


def default_config_path() -> Path:
    return Path(here(".")) / "config" / "default.yaml"


def load_config(config_path: Optional[Path] = None) -> Dict:
    """Loads the YAML configuration file, merged over the built-in defaults.

    A missing file is an error only when a path is given explicitly.
    """
    if config_path is None:
        config_path = default_config_path()
        if not config_path.exists():
            logging.info(f"No config file at {config_path}, using built-in defaults")
            return {section: dict(values) for section, values in DEFAULT_CONFIG.items()}
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found at {config_path}")

    with open(config_path, "r") as f:
        user_config = yaml.safe_load(f) or {}

    config = {}
    for section, defaults in DEFAULT_CONFIG.items():
        values = user_config.get(section) or {}
        unknown = set(values) - set(defaults)
        if unknown:
            raise InvalidParameterError(f"Unknown keys in '{section}' config section: {sorted(unknown)}")
        config[section] = {**defaults, **values}
    return config


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def load_sampling_config(config_path: Optional[Path] = None) -> Dict:
    """Load and validate the 'sampling' section of the config."""
    sampling_config = load_config(config_path)["sampling"]

    if not _is_int(sampling_config["count"]) or sampling_config["count"] <= 0:
        raise InvalidParameterError(f"count must be a positive integer, got {sampling_config['count']!r}")
    if sampling_config["mode"] not in [m.value for m in SamplingMode]:
        raise InvalidParameterError(f"Unknown sampling mode {sampling_config['mode']!r}")
    # The seed is used exactly as written
    if sampling_config["seed"] is not None and not _is_int(sampling_config["seed"]):
        raise InvalidParameterError(f"seed must be an integer or null, got {sampling_config['seed']!r}")
    if not _is_int(sampling_config["max_attempts_multiplier"]) or sampling_config["max_attempts_multiplier"] <= 0:
        raise InvalidParameterError("max_attempts_multiplier must be a positive integer.")
    for key in ("radius_km", "min_distance_km"):
        if sampling_config[key] < 0:
            raise InvalidParameterError(f"{key} must be non-negative, got {sampling_config[key]}")

    return sampling_config


def load_density_config(config_path: Optional[Path] = None) -> Dict:
    """Load and validate the 'density' section of the config."""
    density_config = load_config(config_path)["density"]
    density_config["transform_method"] = TransformMethod(density_config["transform_method"])
    density_config["background_method"] = BackgroundMethod(density_config["background_method"])
    if density_config["resolution"] <= 0:
        raise InvalidParameterError("Density grid resolution must be positive.")
    return density_config


def _find_column(columns, candidates) -> str:
    for name in candidates:
        if name in columns:
            return name
    raise InvalidParameterError(f"None of the columns {list(candidates)} found in occurrence data")


def load_occurrences(filepath: Union[str, Path]) -> gpd.GeoDataFrame:
    """
    Load occurrence points from GeoJSON/GPKG, Parquet or CSV.

    CSV files need longitude/latitude columns (GBIF's decimalLongitude/decimalLatitude or
    lon/lat) in WGS84. Other formats are reprojected to EPSG:4326.
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Occurrence data not found at {filepath}")

    if filepath.suffix == ".parquet":
        occurrences = gpd.read_parquet(filepath)
    elif filepath.suffix == ".csv":
        df = pd.read_csv(filepath)
        lon_col = _find_column(df.columns, LON_COLUMNS)
        lat_col = _find_column(df.columns, LAT_COLUMNS)
        df = df.dropna(subset=[lon_col, lat_col])
        occurrences = gpd.GeoDataFrame(
            df, geometry=gpd.points_from_xy(df[lon_col], df[lat_col]), crs=GEOGRAPHIC_CRS
        )
    else:
        occurrences = gpd.read_file(filepath)

    if occurrences.crs is not None and occurrences.crs != GEOGRAPHIC_CRS:
        occurrences = occurrences.to_crs(GEOGRAPHIC_CRS)
    logging.info(f"Loaded {len(occurrences)} occurrence records from {filepath}")
    return occurrences


def load_raster(filepath: Union[str, Path]) -> xr.DataArray:
    """Load a raster with nodata masked to NaN, dropping a single band dimension."""
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Raster not found at {filepath}")
    raster = rxr.open_rasterio(filepath, masked=True)
    if "band" in raster.dims and raster.sizes["band"] == 1:
        raster = raster.squeeze("band", drop=True)
    return raster


def write_points(points: gpd.GeoDataFrame, output_path: Union[str, Path]) -> Path:
    """Write points to Parquet if the suffix is .parquet, otherwise GeoJSON."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if output_path.suffix == ".parquet":
        points.to_parquet(output_path)
    else:
        points.to_file(output_path, driver="GeoJSON")
    logging.info(f"Saved {len(points)} background points to: {output_path}")
    return output_path


def write_parameters(parameters: Dict, output_path: Union[str, Path]) -> Path:
    output_path = Path(output_path)
    with open(output_path, "w") as f:
        json.dump(parameters, f, indent=2, default=str)
    return output_path
