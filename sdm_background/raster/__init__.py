# sdm_background/raster/__init__.py
from .grid import make_model_grid, cell_table, check_alignment, squeeze_band
from .density import occurrence_density_surface, TransformMethod, BackgroundMethod

__all__ = [
    "make_model_grid",
    "cell_table",
    "check_alignment",
    "squeeze_band",
    "occurrence_density_surface",
    "TransformMethod",
    "BackgroundMethod",
]
