"""
Dynamic composition grid.

A rule-of-thirds grid whose lines snap to the detected horizon and to strong
vertical structures, extended with the focal points suggested by leading lines.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Tuple
import logging

from utils.geometry import Point

from .angle_detector import AngleAnalysis
from .leading_lines import LeadingLinesAnalysis

logger = logging.getLogger(__name__)


class GridType(Enum):
    RULE_OF_THIRDS = "rule_of_thirds"
    DYNAMIC = "dynamic"


@dataclass(frozen=True)
class DynamicGrid:
    """Always two vertical and two horizontal lines; intersections come first."""

    vertical_lines: Tuple[float, float]
    horizontal_lines: Tuple[float, float]
    intersection_points: Tuple[Point, ...]
    grid_type: GridType

    def nearest_intersection(self, point: Point) -> Point:
        return min(self.intersection_points,
                   key=lambda p: math.hypot(p.x - point.x, p.y - point.y))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vertical_lines': list(self.vertical_lines),
            'horizontal_lines': list(self.horizontal_lines),
            'intersection_points': [tuple(p) for p in self.intersection_points],
            'type': self.grid_type.value
        }


def _replace_nearest(lines: List[float], value: float) -> None:
    if abs(value - lines[0]) < abs(value - lines[-1]):
        lines[0] = value
    else:
        lines[-1] = value


def build_dynamic_grid(size: Tuple[int, int],
                       angle_analysis: AngleAnalysis,
                       leading_lines: LeadingLinesAnalysis,
                       snap_band: Tuple[float, float] = (0.2, 0.8),
                       max_vertical_snaps: int = 2) -> DynamicGrid:
    """
    Build the dynamic grid for an image.

    Args:
        size: Image (width, height)
        angle_analysis: Source of the horizon and vertical line evidence
        leading_lines: Source of the extra focal points and the grid type
        snap_band: Fraction of each axis inside which detected lines may replace a grid line
        max_vertical_snaps: How many vertical lines may adjust the grid

    Returns:
        DynamicGrid
    """

    w, h = size
    low, high = snap_band

    vertical = [w / 3, w * 2 / 3]
    horizontal = [h / 3, h * 2 / 3]

    if angle_analysis.horizon_angle is not None:
        horizon_y = h * 0.5 + math.tan(math.radians(angle_analysis.horizon_angle)) * w / 2
        if h * low < horizon_y < h * high:
            _replace_nearest(horizontal, horizon_y)

    for line in angle_analysis.vertical_lines[:max_vertical_snaps]:
        line_x = (line.start.x + line.end.x) / 2
        if w * low < line_x < w * high:
            _replace_nearest(vertical, line_x)

    intersections = [Point(x, y) for x in vertical for y in horizontal]
    intersections.extend(leading_lines.suggested_focal_points)

    grid_type = GridType.DYNAMIC if leading_lines.has_strong_leading_lines else GridType.RULE_OF_THIRDS

    logger.debug(f"Dynamic grid: vertical = {vertical}, horizontal = {horizontal}, "
                 f"{len(intersections)} intersections ({grid_type.value})")

    return DynamicGrid(
        vertical_lines=(vertical[0], vertical[1]),
        horizontal_lines=(horizontal[0], horizontal[1]),
        intersection_points=tuple(intersections),
        grid_type=grid_type
    )
