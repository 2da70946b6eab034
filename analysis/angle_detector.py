"""
Angle and Horizon Analysis

Scans an image for horizontal, vertical and diagonal line evidence and derives
the dominant tilt, the horizon angle and whether the frame should be
straightened. Edge evidence comes from the preprocessor's edge buffer.
"""

import math
import cv2
import numpy as np
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from preprocessing.image_preprocessor import ImagePreprocessor
from preprocessing.pixel_buffer import PixelBuffer
from utils.concurrency import CancellationToken, check_cancelled
from utils.geometry import Point, distance, segment_angle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Line:
    """Straight line evidence found by the angle scans."""

    start: Point
    end: Point
    angle: float
    strength: float

    @property
    def length(self) -> float:
        return distance(self.start, self.end)

    @property
    def midpoint(self) -> Point:
        return Point((self.start.x + self.end.x) / 2, (self.start.y + self.end.y) / 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': tuple(self.start),
            'end': tuple(self.end),
            'angle': self.angle,
            'strength': self.strength
        }


@dataclass(frozen=True)
class AngleAnalysis:
    dominant_angle: float
    horizon_angle: Optional[float]
    vertical_lines: Tuple[Line, ...]
    horizontal_lines: Tuple[Line, ...]
    confidence: float
    should_straighten: bool

    @property
    def correction_angle(self) -> float:
        """Angle the frame is tilted by: the horizon when one was found."""

        return self.horizon_angle if self.horizon_angle is not None else self.dominant_angle

    def to_dict(self) -> Dict[str, Any]:
        return {
            'dominant_angle': self.dominant_angle,
            'horizon_angle': self.horizon_angle,
            'vertical_lines': [line.to_dict() for line in self.vertical_lines],
            'horizontal_lines': [line.to_dict() for line in self.horizontal_lines],
            'confidence': self.confidence,
            'should_straighten': self.should_straighten
        }


class AngleDetector:
    """
    Detects tilt and horizon angles from sampled edge evidence.

    Rows and columns across the middle of the frame are sampled against the
    thresholded edge buffer; a scan whose edge ratio exceeds ``min_edge_ratio``
    becomes a Line. Four fixed diagonal probes are always added unless
    ``gate_diagonal_probes`` asks for edge evidence behind them.
    """

    def __init__(self, preprocessor: Optional[ImagePreprocessor] = None,
                 config: Optional[Dict[str, Any]] = None):
        self.config = {**self._get_default_config(), **(config or {})}
        self.preprocessor = preprocessor or ImagePreprocessor()

        logger.info(f"AngleDetector initialized with {self.config['scan_count']} scans per axis")

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration for the angle detector"""

        return {
            'scan_count': 6,
            'sample_count': 10,
            'min_edge_ratio': 0.3,
            'edge_point_threshold': 0.2,
            'edge_search_radius': 1,
            'diagonal_strength': 0.5,
            'gate_diagonal_probes': False,
            'horizon_band': (0.3, 0.7),
            'horizon_tolerance': 15.0,
            'straighten_threshold': 2.0,
            'level_threshold': 5.0
        }

    def analyze_image_angle(self, image: PixelBuffer,
                            cancel_token: Optional[CancellationToken] = None) -> AngleAnalysis:
        """
        Analyze the tilt of an image.

        Args:
            image: Input buffer
            cancel_token: Optional token to abort the analysis

        Returns:
            AngleAnalysis (no lines and a level frame for unreadable input)
        """

        lines = self.detect_dominant_lines(image, cancel_token)
        size = image.size if self.preprocessor.is_readable(image) else (0, 0)

        analysis = self.summarize_lines(lines, size)

        logger.debug(f"Angle analysis: {len(lines)} lines, dominant = {analysis.dominant_angle:.2f}, "
                     f"horizon = {analysis.horizon_angle}")

        return analysis

    def summarize_lines(self, lines: Sequence[Line], size: Tuple[int, int]) -> AngleAnalysis:
        """Derive the full AngleAnalysis from a set of lines."""

        horizon_angle = self.detect_horizon_angle(lines, size)
        dominant_angle = self.calculate_dominant_angle(lines)
        vertical, horizontal = self.categorize_lines(lines)
        confidence = self.calculate_confidence(lines, horizon_angle, dominant_angle)

        correction = horizon_angle if horizon_angle is not None else dominant_angle

        return AngleAnalysis(
            dominant_angle=dominant_angle,
            horizon_angle=horizon_angle,
            vertical_lines=tuple(vertical),
            horizontal_lines=tuple(horizontal),
            confidence=confidence,
            should_straighten=abs(correction) > self.config['straighten_threshold']
        )

    # Line detection

    def detect_dominant_lines(self, image: PixelBuffer,
                              cancel_token: Optional[CancellationToken] = None) -> List[Line]:
        """
        Scan rows, columns and diagonal probes for edge-backed lines.

        Args:
            image: Input buffer
            cancel_token: Optional token to abort the scan

        Returns:
            Lines in scan order (rows, then columns, then diagonals)
        """

        edge_buffer = self.preprocessor.detect_edges(image)
        if edge_buffer is None:
            return []

        check_cancelled(cancel_token)

        edges = edge_buffer.to_array()
        w, h = edge_buffer.size
        scan_count = self.config['scan_count']
        sample_count = self.config['sample_count']
        min_ratio = self.config['min_edge_ratio']

        lines = []

        for i in range(scan_count):
            y = h * (2 + i) / 10
            samples = [Point(w * k / sample_count, y) for k in range(sample_count)]
            strength = self._edge_ratio(edges, samples)

            if strength > min_ratio:
                lines.append(Line(Point(0.0, y), Point(float(w), y), 0.0, strength))

        check_cancelled(cancel_token)

        for i in range(scan_count):
            x = w * (2 + i) / 10
            samples = [Point(x, h * k / sample_count) for k in range(sample_count)]
            strength = self._edge_ratio(edges, samples)

            if strength > min_ratio:
                lines.append(Line(Point(x, 0.0), Point(x, float(h)), 90.0, strength))

        lines.extend(self._detect_diagonal_lines(edges, w, h))

        return lines

    def _detect_diagonal_lines(self, edges: np.ndarray, w: int, h: int) -> List[Line]:
        probes = [
            (Point(0.0, 0.0), Point(float(w), float(h))),
            (Point(float(w), 0.0), Point(0.0, float(h))),
            (Point(0.0, h * 0.5), Point(w * 0.5, 0.0)),
            (Point(w * 0.5, float(h)), Point(float(w), h * 0.5))
        ]
        sample_count = self.config['sample_count']

        lines = []
        for start, end in probes:
            if self.config['gate_diagonal_probes']:
                samples = [
                    Point(start.x + (end.x - start.x) * t, start.y + (end.y - start.y) * t)
                    for t in ((k + 0.5) / sample_count for k in range(sample_count))
                ]
                if self._edge_ratio(edges, samples) <= self.config['min_edge_ratio']:
                    continue

            lines.append(Line(start, end, segment_angle(start, end), self.config['diagonal_strength']))

        return lines

    def _is_edge_point(self, edges: np.ndarray, point: Point) -> bool:
        h, w = edges.shape[:2]
        x = min(max(int(point.x), 0), w - 1)
        y = min(max(int(point.y), 0), h - 1)
        r = self.config['edge_search_radius']

        window = edges[max(0, y - r):y + r + 1, max(0, x - r):x + r + 1]
        return int(window.max()) >= self.config['edge_point_threshold'] * 255

    def _edge_ratio(self, edges: np.ndarray, samples: Sequence[Point]) -> float:
        if not samples:
            return 0.0

        hits = sum(1 for point in samples if self._is_edge_point(edges, point))
        return hits / len(samples)

    # Horizon detection

    def detect_horizon_angle(self, lines: Sequence[Line], size: Tuple[int, int]) -> Optional[float]:
        """
        Angle of the strongest near-horizontal line in the central band.

        Returns:
            Horizon angle in degrees, or None if no line qualifies
        """

        _, h = size
        band_start, band_end = self.config['horizon_band']
        tolerance = self.config['horizon_tolerance']

        candidates = [
            line for line in lines
            if h * band_start < line.midpoint.y < h * band_end and abs(line.angle) < tolerance
        ]

        if not candidates:
            return None

        # First strongest line wins ties
        strongest = max(candidates, key=lambda line: line.strength)
        return segment_angle(strongest.start, strongest.end)

    def calculate_dominant_angle(self, lines: Sequence[Line]) -> float:
        """Strength and length weighted mean angle (0 when there is no evidence)."""

        weighted_angles = 0.0
        total_weight = 0.0

        for line in lines:
            weight = line.strength * line.length
            weighted_angles += line.angle * weight
            total_weight += weight

        return weighted_angles / total_weight if total_weight > 0 else 0.0

    def categorize_lines(self, lines: Sequence[Line]) -> Tuple[List[Line], List[Line]]:
        """Split lines into (vertical, horizontal); steep diagonals belong to neither."""

        vertical = []
        horizontal = []

        for line in lines:
            abs_angle = abs(line.angle)
            if abs_angle < 30 or abs_angle > 150:
                horizontal.append(line)
            elif 60 < abs_angle < 120:
                vertical.append(line)

        return vertical, horizontal

    def calculate_confidence(self, lines: Sequence[Line], horizon_angle: Optional[float],
                             dominant_angle: float) -> float:
        confidence = 0.5
        confidence += min(len(lines), 20) / 40.0

        if horizon_angle is not None:
            confidence += 0.2

        if abs(dominant_angle) < self.config['level_threshold']:
            confidence += 0.2

        return min(confidence, 1.0)

    # Image straightening

    def straighten_image(self, image: PixelBuffer, angle: float) -> Optional[PixelBuffer]:
        """
        Rotate an image against its detected tilt to straighten it.

        The canvas grows to hold the whole rotated frame; uncovered corners are
        filled with zeros.

        Args:
            image: Input buffer
            angle: Detected tilt in degrees

        Returns:
            Rotated buffer in the input's pixel format, or None if unreadable
        """

        if not self.preprocessor.is_readable(image):
            logger.warning("straighten_image: unreadable pixel buffer")
            return None

        pixels = image.to_array()
        h, w = pixels.shape[:2]

        radians = math.radians(angle)
        cos_a = abs(math.cos(radians))
        sin_a = abs(math.sin(radians))

        new_w = max(1, int(np.round(h * sin_a + w * cos_a)))
        new_h = max(1, int(np.round(h * cos_a + w * sin_a)))

        # A positive tilt leans clockwise in y-down pixels; OpenCV turns positive angles counter-clockwise
        matrix = cv2.getRotationMatrix2D((w / 2, h / 2), angle, 1.0)
        matrix[0, 2] += new_w / 2 - w / 2
        matrix[1, 2] += new_h / 2 - h / 2

        rotated = cv2.warpAffine(np.ascontiguousarray(pixels), matrix, (new_w, new_h),
                                 flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_CONSTANT, borderValue=0)

        logger.debug(f"Straightened {w}x{h} image by {-angle:.2f} degrees to {new_w}x{new_h}")

        return PixelBuffer.from_array(rotated, image.pixel_format)
