"""
Preprocessing Module

Pixel buffer types and the edge/gradient preprocessor shared by every
composition detector.
"""

from .pixel_buffer import (
    PixelBuffer,
    PixelFormat,
    BrightnessDistribution,
    HistogramData,
    UnreadableImageError
)
from .image_preprocessor import (
    ImagePreprocessor,
    GradientBuffers,
    create_preprocessing_pipeline
)

__all__ = [
    'PixelBuffer',
    'PixelFormat',
    'BrightnessDistribution',
    'HistogramData',
    'UnreadableImageError',
    'ImagePreprocessor',
    'GradientBuffers',
    'create_preprocessing_pipeline'
]
