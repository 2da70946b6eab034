"""
Geometry Helpers for Composition Analysis

Plain 2D primitives shared by the detectors and the composition matcher:
points, direction vectors, rectangles, segment intersection and the greedy
point clustering used for convergence and focal points.

All coordinates are in image pixels with the origin at the top-left corner
and y growing downwards.
"""

import math
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple


class Point(NamedTuple):
    x: float
    y: float


class Vector(NamedTuple):
    dx: float
    dy: float

    @property
    def length(self) -> float:
        return math.hypot(self.dx, self.dy)


ZERO_VECTOR = Vector(0.0, 0.0)


class Rect(NamedTuple):
    """Axis-aligned rectangle given by its top-left corner and size."""

    x: float
    y: float
    width: float
    height: float

    @property
    def min_x(self) -> float:
        return self.x

    @property
    def min_y(self) -> float:
        return self.y

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height

    @property
    def mid_x(self) -> float:
        return self.x + self.width / 2

    @property
    def mid_y(self) -> float:
        return self.y + self.height / 2

    @property
    def center(self) -> Point:
        return Point(self.mid_x, self.mid_y)

    @property
    def area(self) -> float:
        return self.width * self.height

    @classmethod
    def centered_at(cls, center: Point, width: float, height: float) -> "Rect":
        return cls(center.x - width / 2, center.y - height / 2, width, height)


def distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Euclidean distance between two points."""

    return math.hypot(a[0] - b[0], a[1] - b[1])


def segment_angle(start: Point, end: Point) -> float:
    """Angle of the segment start -> end in degrees, as returned by atan2."""

    return math.degrees(math.atan2(end.y - start.y, end.x - start.x))


def centroid(points: Sequence[Point]) -> Point:
    """Mean of a point set; the origin for an empty set."""

    if not points:
        return Point(0.0, 0.0)

    sum_x = sum(p.x for p in points)
    sum_y = sum(p.y for p in points)

    return Point(sum_x / len(points), sum_y / len(points))


def path_length(points: Sequence[Point]) -> float:
    """Length of the polyline through the points in order."""

    return sum(distance(points[i - 1], points[i]) for i in range(1, len(points)))


def line_intersection(start1: Point, end1: Point,
                      start2: Point, end2: Point,
                      epsilon: float = 0.001,
                      t_range: Tuple[float, float] = (-1.0, 2.0)) -> Optional[Point]:
    """
    Intersect the infinite lines through two segments.

    Args:
        start1, end1: First segment
        start2, end2: Second segment
        epsilon: Pairs whose determinant magnitude is at or below this are parallel
        t_range: Accepted range of the intersection parameter along the first segment

    Returns:
        Intersection point, or None for near-parallel pairs and intersections
        far outside the first segment's extended range
    """

    x1, y1 = start1
    x2, y2 = end1
    x3, y3 = start2
    x4, y4 = end2

    denominator = (x1 - x2) * (y3 - y4) - (y1 - y2) * (x3 - x4)

    if abs(denominator) <= epsilon:
        return None

    t = ((x1 - x3) * (y3 - y4) - (y1 - y3) * (x3 - x4)) / denominator

    if t < t_range[0] or t > t_range[1]:
        return None

    return Point(x1 + t * (x2 - x1), y1 + t * (y2 - y1))


def cluster_points(points: Iterable[Point], threshold: float) -> List[Point]:
    """
    Greedy single-pass clustering.

    Each point joins the first cluster whose running centroid lies closer than
    ``threshold``, otherwise it opens a new cluster. Returns cluster centroids
    in cluster creation order.
    """

    clusters: List[List[Point]] = []

    for point in points:
        for cluster in clusters:
            if distance(point, centroid(cluster)) < threshold:
                cluster.append(point)
                break
        else:
            clusters.append([point])

    return [centroid(cluster) for cluster in clusters]
