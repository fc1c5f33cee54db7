"""
Background (pseudo-absence) point generation for presence-only species distribution modelling.
"""

from .errors import InvalidParameterError, AlignmentError, PartialSampleWarning
from .extent import StudyExtent
from .occurrence.sampling import (
    BackgroundSampler,
    BackgroundPointSet,
    SamplingMode,
    RandomParams,
    BiasLayerParams,
    GeoExclusionParams,
    TargetedGroupParams,
)

__version__ = "0.1.0"

__all__ = [
    "InvalidParameterError",
    "AlignmentError",
    "PartialSampleWarning",
    "StudyExtent",
    "BackgroundSampler",
    "BackgroundPointSet",
    "SamplingMode",
    "RandomParams",
    "BiasLayerParams",
    "GeoExclusionParams",
    "TargetedGroupParams",
]
