"""
Validation utilities for the composition analysis engine.

Provides pixel-buffer checks used before decoding, and validation of the
engine configuration dictionaries.
"""

import numbers
from typing import Any, Dict, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Raised when an engine configuration is rejected."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class ImageValidator:
    """Validator for pixel buffers handed to the engine."""

    def __init__(self,
                 min_size: Tuple[int, int] = (1, 1),
                 max_size: Optional[Tuple[int, int]] = None):
        """
        Initialize the image validator.

        Args:
            min_size: Minimum allowed image dimensions (width, height)
            max_size: Maximum allowed image dimensions (width, height); None for no limit
        """
        self.min_size = min_size
        self.max_size = max_size

    def validate_buffer(self, buffer: Any) -> Dict[str, bool]:
        """
        Validate buffer dimensions, format and byte length.

        Args:
            buffer: PixelBuffer-like object (width, height, pixel_format, data)

        Returns:
            Dictionary with validation results
        """
        results = {
            'not_empty': False,
            'known_format': False,
            'size_in_range': False,
            'length_matches': False,
            'valid': False
        }

        if buffer is None or not getattr(buffer, 'data', None):
            logger.warning("Pixel buffer is empty or None")
            return results
        results['not_empty'] = True

        channels = getattr(getattr(buffer, 'pixel_format', None), 'channels', None)
        if not isinstance(channels, int):
            logger.warning(f"Unknown pixel format: {getattr(buffer, 'pixel_format', None)!r}")
            return results
        results['known_format'] = True

        w, h = buffer.width, buffer.height
        if w < self.min_size[0] or h < self.min_size[1]:
            logger.warning(f"Image too small: {w}x{h} < {self.min_size}")
            return results
        if self.max_size is not None and (w > self.max_size[0] or h > self.max_size[1]):
            logger.warning(f"Image too large: {w}x{h} > {self.max_size}")
            return results
        results['size_in_range'] = True

        expected = w * h * channels
        if len(buffer.data) != expected:
            logger.warning(f"Buffer length mismatch: {len(buffer.data)} bytes, expected {expected}")
            return results
        results['length_matches'] = True

        results['valid'] = all([
            results['not_empty'],
            results['known_format'],
            results['size_in_range'],
            results['length_matches']
        ])

        return results

    def is_valid(self, buffer: Any) -> bool:
        return self.validate_buffer(buffer)['valid']


# Keys whose values are ratios or confidences in [0, 1]
_UNIT_INTERVAL_KEYS = {
    'angle': {'min_edge_ratio', 'diagonal_strength', 'edge_point_threshold'},
    'leading_lines': {'gradient_threshold', 'strong_line_strength', 'focal_margin'},
    'preprocessing': {'salient_threshold', 'min_region_fraction'},
    'rules': {
        'rule_of_thirds_threshold', 'rule_of_thirds_increment', 'rule_of_thirds_proximity',
        'symmetry_threshold', 'framing_threshold', 'framing_contrast_bonus',
        'framing_min_margin', 'diagonals_threshold', 'diagonal_weight'
    },
    'scoring': {'default_score', 'diversity_bonus'},
    'suggestions': {'center_tolerance'},
}

# Keys whose values must be positive integers
_POSITIVE_INT_KEYS = {
    'preprocessing': {'cache_size', 'max_salient_regions'},
    'angle': {'sample_count', 'scan_count'},
    'leading_lines': {
        'scan_interval', 'sample_step', 'diagonal_margin', 'diagonal_spacing',
        'diagonal_step', 'min_points'
    },
    'rules': {'max_overlay_lines'},
}

# Keys whose values must be positive numbers
_POSITIVE_NUMBER_KEYS = {
    'preprocessing': {'edge_threshold', 'blur_radius', 'contrast_amount', 'salient_contrast_amount'},
    'leading_lines': {'contrast_amount', 'cluster_threshold', 'strength_normalizer', 'curve_ratio'},
    'angle': {'horizon_tolerance', 'straighten_threshold'},
}

VALID_SECTIONS = {'preprocessing', 'angle', 'leading_lines', 'rules', 'scoring', 'suggestions'}


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def validate_engine_config(config: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """
    Validate engine configuration parameters.

    Args:
        config: Configuration dictionary with one sub-dictionary per component

    Returns:
        tuple: (is_valid, list_of_errors)
    """
    errors = []

    if not isinstance(config, dict):
        return False, ["Configuration must be a dictionary"]

    for section, values in config.items():
        if section not in VALID_SECTIONS:
            errors.append(f"Unknown configuration section '{section}'. Valid sections: {sorted(VALID_SECTIONS)}")
            continue

        if not isinstance(values, dict):
            errors.append(f"Section '{section}' must be a dictionary")
            continue

        for key, value in values.items():
            if key in _UNIT_INTERVAL_KEYS.get(section, ()):
                if not _is_number(value) or not (0 <= value <= 1):
                    errors.append(f"{section}.{key} must be a number between 0 and 1")

            elif key in _POSITIVE_INT_KEYS.get(section, ()):
                if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                    errors.append(f"{section}.{key} must be a positive integer")

            elif key in _POSITIVE_NUMBER_KEYS.get(section, ()):
                if not _is_number(value) or value <= 0:
                    errors.append(f"{section}.{key} must be a positive number")

            elif key == 'max_workers' and value is not None:
                if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                    errors.append(f"{section}.max_workers must be a positive integer or None")

    return len(errors) == 0, errors
