"""
Leading Line Detection

Traces line-like structures in the directional gradient buffers, then derives
their convergence points, the dominant direction of travel and the focal
points the lines suggest.
"""

import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from preprocessing.image_preprocessor import GradientBuffers, ImagePreprocessor
from preprocessing.pixel_buffer import PixelBuffer
from utils.concurrency import CancellationToken, check_cancelled, parallel_map
from utils.geometry import (
    Point,
    Vector,
    ZERO_VECTOR,
    cluster_points,
    distance,
    line_intersection,
    path_length,
    segment_angle
)

logger = logging.getLogger(__name__)

STRONG_LINE_STRENGTH = 0.7


class LineType(Enum):
    DIAGONAL = "diagonal"
    VERTICAL = "vertical"
    HORIZONTAL = "horizontal"
    CURVED = "curved"
    CONVERGING = "converging"


@dataclass(frozen=True)
class LeadingLine:
    """A traced point sequence together with its classification."""

    points: Tuple[Point, ...]
    strength: float
    angle: float
    line_type: LineType
    convergence_point: Optional[Point] = None

    @property
    def start(self) -> Point:
        return self.points[0]

    @property
    def end(self) -> Point:
        return self.points[-1]

    @property
    def length(self) -> float:
        return distance(self.start, self.end)

    @property
    def direction(self) -> Vector:
        return Vector(self.end.x - self.start.x, self.end.y - self.start.y)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'points': [tuple(p) for p in self.points],
            'strength': self.strength,
            'angle': self.angle,
            'type': self.line_type.value,
            'convergence_point': tuple(self.convergence_point) if self.convergence_point else None
        }


@dataclass(frozen=True)
class LeadingLinesAnalysis:
    detected_lines: Tuple[LeadingLine, ...]
    convergence_points: Tuple[Point, ...]
    dominant_direction: Vector
    has_strong_leading_lines: bool
    suggested_focal_points: Tuple[Point, ...]

    @classmethod
    def empty(cls) -> "LeadingLinesAnalysis":
        return cls((), (), ZERO_VECTOR, False, ())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'detected_lines': [line.to_dict() for line in self.detected_lines],
            'convergence_points': [tuple(p) for p in self.convergence_points],
            'dominant_direction': tuple(self.dominant_direction),
            'has_strong_leading_lines': self.has_strong_leading_lines,
            'suggested_focal_points': [tuple(p) for p in self.suggested_focal_points]
        }


class LeadingLinesDetector:
    """
    Leading line detector built on the preprocessor's Sobel gradients.

    Rows are traced through the across-row gradient, columns through the
    across-column gradient and diagonal rays through the magnitude buffer.
    Every scan position is an independent unit fanned out over a thread pool.
    """

    def __init__(self, preprocessor: Optional[ImagePreprocessor] = None,
                 config: Optional[Dict[str, Any]] = None):
        self.config = {**self._get_default_config(), **(config or {})}
        self.preprocessor = preprocessor or ImagePreprocessor()

        logger.info(f"LeadingLinesDetector initialized with scan_interval = {self.config['scan_interval']}")

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration for leading line detection"""

        return {
            'contrast_amount': 1.8,
            'scan_interval': 20,
            'sample_step': 10,
            'diagonal_margin': 50,
            'diagonal_spacing': 50,
            'diagonal_step': 10,
            'gradient_threshold': 0.25,
            'min_points': 6,
            'strength_normalizer': 1000.0,
            'min_curve_points': 11,
            'curve_ratio': 1.1,
            'cluster_threshold': 50.0,
            'focal_margin': 0.2,
            'strong_line_strength': STRONG_LINE_STRENGTH,
            'max_workers': None
        }

    def detect_leading_lines(self, image: PixelBuffer,
                             cancel_token: Optional[CancellationToken] = None) -> LeadingLinesAnalysis:
        """
        Detect leading lines in an image.

        Args:
            image: Input buffer
            cancel_token: Optional token to abort the detection

        Returns:
            LeadingLinesAnalysis (empty for unreadable input)
        """

        # Step 1: grayscale, contrast boost, gradients
        gray = self.preprocessor.convert_to_grayscale(image)
        enhanced = None
        if gray is not None:
            enhanced = self.preprocessor.enhance_contrast(gray, self.config['contrast_amount'])
        if enhanced is None:
            logger.warning("Leading line detection skipped: unreadable image")
            return LeadingLinesAnalysis.empty()

        gradients = self.preprocessor.apply_sobel_filter(enhanced, cancel_token)
        if gradients is None:
            return LeadingLinesAnalysis.empty()

        check_cancelled(cancel_token)

        # Step 2: trace every scan position independently
        lines = self.extract_lines(gradients, cancel_token)

        # Step 3: aggregate
        size = image.size
        convergence_points = self.find_convergence_points(lines)
        dominant_direction = self.calculate_dominant_direction(lines)
        focal_points = self.identify_focal_points(convergence_points, size)
        has_strong = any(line.strength > self.config['strong_line_strength'] for line in lines)

        logger.debug(f"Leading lines: {len(lines)} lines, {len(convergence_points)} convergence points, "
                     f"strong = {has_strong}")

        return LeadingLinesAnalysis(
            detected_lines=tuple(lines),
            convergence_points=tuple(convergence_points),
            dominant_direction=dominant_direction,
            has_strong_leading_lines=has_strong,
            suggested_focal_points=tuple(focal_points)
        )

    # Line extraction

    def extract_lines(self, gradients: GradientBuffers,
                      cancel_token: Optional[CancellationToken] = None) -> List[LeadingLine]:
        """Trace rows, columns and diagonal rays; results keep submission order."""

        h, w = gradients.magnitude.shape[:2]
        interval = self.config['scan_interval']
        margin = self.config['diagonal_margin']
        spacing = self.config['diagonal_spacing']

        tasks = [('row', y) for y in range(interval, h - interval, interval)]
        tasks += [('column', x) for x in range(interval, w - interval, interval)]
        tasks += [('diagonal', Point(float(x), 0.0)) for x in range(margin, w - margin, spacing)]
        tasks += [('diagonal', Point(0.0, float(y))) for y in range(margin, h - margin, spacing)]

        def trace(task) -> Optional[LeadingLine]:
            kind, position = task
            if kind == 'row':
                points = self._scan_row(gradients.vertical, position)
            elif kind == 'column':
                points = self._scan_column(gradients.horizontal, position)
            else:
                points = self._trace_diagonal(gradients.magnitude, position)
            return self.create_leading_line(points)

        results = parallel_map(trace, tasks, max_workers=self.config['max_workers'],
                               cancel_token=cancel_token)

        return [line for line in results if line is not None]

    def _scan_row(self, response: np.ndarray, y: int) -> List[Point]:
        h, w = response.shape[:2]
        half = self.config['scan_interval'] // 2
        top, bottom = max(0, y - half), min(h, y + half)
        threshold = self.config['gradient_threshold']

        samples = []
        for x in range(0, w, self.config['sample_step']):
            band = response[top:bottom, x]
            offset = int(np.argmax(band))
            samples.append(Point(float(x), float(top + offset)) if band[offset] >= threshold else None)

        return _longest_run(samples)

    def _scan_column(self, response: np.ndarray, x: int) -> List[Point]:
        h, w = response.shape[:2]
        half = self.config['scan_interval'] // 2
        left, right = max(0, x - half), min(w, x + half)
        threshold = self.config['gradient_threshold']

        samples = []
        for y in range(0, h, self.config['sample_step']):
            band = response[y, left:right]
            offset = int(np.argmax(band))
            samples.append(Point(float(left + offset), float(y)) if band[offset] >= threshold else None)

        return _longest_run(samples)

    def _trace_diagonal(self, magnitude: np.ndarray, start: Point) -> List[Point]:
        h, w = magnitude.shape[:2]
        step = self.config['diagonal_step']
        threshold = self.config['gradient_threshold']

        samples = []
        x, y = start
        while 0 <= x < w and 0 <= y < h:
            xi, yi = int(x), int(y)
            window = magnitude[max(0, yi - 2):yi + 3, max(0, xi - 2):xi + 3]
            samples.append(Point(x, y) if window.max() >= threshold else None)
            x += step
            y += step

        return _longest_run(samples)

    # Line creation

    def create_leading_line(self, points: Sequence[Point]) -> Optional[LeadingLine]:
        """Build a LeadingLine from a traced point run (None for short runs)."""

        if len(points) < self.config['min_points']:
            return None

        points = tuple(points)
        first, last = points[0], points[-1]

        angle = segment_angle(first, last)
        strength = min(distance(first, last) / self.config['strength_normalizer'], 1.0)

        # Extend the line by twice its length
        convergence_point = Point(last.x + (last.x - first.x) * 2, last.y + (last.y - first.y) * 2)

        return LeadingLine(
            points=points,
            strength=strength,
            angle=angle,
            line_type=self.determine_line_type(angle, points),
            convergence_point=convergence_point
        )

    def determine_line_type(self, angle: float, points: Sequence[Point]) -> LineType:
        abs_angle = abs(angle)

        if abs_angle < 15 or abs_angle > 165:
            return LineType.HORIZONTAL
        elif 75 < abs_angle < 105:
            return LineType.VERTICAL
        elif self._is_curved(points):
            return LineType.CURVED
        else:
            return LineType.DIAGONAL

    def _is_curved(self, points: Sequence[Point]) -> bool:
        if len(points) < self.config['min_curve_points']:
            return False

        direct = distance(points[0], points[-1])
        return path_length(points) > direct * self.config['curve_ratio']

    # Convergence analysis

    def find_convergence_points(self, lines: Sequence[LeadingLine]) -> List[Point]:
        """Pairwise intersections of the lines, clustered."""

        intersections = []
        for i in range(len(lines)):
            for j in range(i + 1, len(lines)):
                point = line_intersection(lines[i].start, lines[i].end, lines[j].start, lines[j].end)
                if point is not None:
                    intersections.append(point)

        return cluster_points(intersections, self.config['cluster_threshold'])

    def calculate_dominant_direction(self, lines: Sequence[LeadingLine]) -> Vector:
        total_dx = 0.0
        total_dy = 0.0
        total_weight = 0.0

        for line in lines:
            direction = line.direction
            total_dx += direction.dx * line.strength
            total_dy += direction.dy * line.strength
            total_weight += line.strength

        if total_weight <= 0:
            return ZERO_VECTOR

        return Vector(total_dx / total_weight, total_dy / total_weight)

    def identify_focal_points(self, convergence_points: Sequence[Point],
                              size: Tuple[int, int]) -> List[Point]:
        """
        Convergence points near the frame plus the four thirds intersections.

        Args:
            convergence_points: Clustered line intersections
            size: Image (width, height)

        Returns:
            Clustered focal points
        """

        w, h = size
        margin = w * self.config['focal_margin']

        focal_points = [
            p for p in convergence_points
            if -margin <= p.x <= w + margin and -margin <= p.y <= h + margin
        ]

        third_x, third_y = w / 3, h / 3
        focal_points.extend([
            Point(third_x, third_y),
            Point(third_x * 2, third_y),
            Point(third_x, third_y * 2),
            Point(third_x * 2, third_y * 2)
        ])

        return cluster_points(focal_points, self.config['cluster_threshold'])


def _longest_run(samples: Sequence[Optional[Point]]) -> List[Point]:
    """Longest run of consecutive hits; the first run wins ties."""

    best: List[Point] = []
    current: List[Point] = []

    for sample in samples:
        if sample is None:
            current = []
            continue
        current.append(sample)
        if len(current) > len(best):
            best = list(current)

    return best
