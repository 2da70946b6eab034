"""
Utilities Module for the Composition Analysis Engine

Geometry primitives, the processing cache, fan-out/fan-in helpers and
validation shared by the preprocessing and analysis packages.
"""

from .geometry import (
    Point,
    Vector,
    Rect,
    ZERO_VECTOR,
    distance,
    centroid,
    path_length,
    segment_angle,
    line_intersection,
    cluster_points
)
from .cache import ProcessingCache
from .concurrency import AnalysisCancelled, CancellationToken, parallel_map, default_worker_count
from .validation import ImageValidator, ValidationError, validate_engine_config

__all__ = [
    # Geometry
    'Point',
    'Vector',
    'Rect',
    'ZERO_VECTOR',
    'distance',
    'centroid',
    'path_length',
    'segment_angle',
    'line_intersection',
    'cluster_points',

    # Caching and concurrency
    'ProcessingCache',
    'AnalysisCancelled',
    'CancellationToken',
    'parallel_map',
    'default_worker_count',

    # Validation
    'ImageValidator',
    'ValidationError',
    'validate_engine_config'
]
