"""
Background point sampling for presence-only occurrence data.
"""

from .sampling import BackgroundSampler, BackgroundPointSet, SamplingMode

__all__ = [
    'BackgroundSampler',
    'BackgroundPointSet',
    'SamplingMode',
]
