"""Geometry kernel: pure polygon helpers used by zone records and the manager.

Every function in this module is side-effect free.  Points are plain
``(x, y)`` sequences; ``Vertex`` is a ``NamedTuple`` so it can be passed
anywhere a point is expected.

Polygons handled here are small (an authoring tool, not an import
path), so the O(n^2) validity check is run on every interactive edit.

Typical usage::

    from scenezone.core.geometry import Vertex, is_simple_polygon, normalize

    square = [Vertex(0, 0), Vertex(100, 0), Vertex(100, 100), Vertex(0, 100)]
    assert is_simple_polygon(square, min_distance=10)
    result = normalize(square)
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import NamedTuple

import numpy as np

# Coordinates closer than this are treated as the same point when
# removing consecutive duplicates.
EPSILON = 1e-9

Point = Sequence[float]


class Vertex(NamedTuple):
    """One polygon corner.

    Attributes:
        x: Horizontal position relative to the owning frame.
        y: Vertical position relative to the owning frame.
        permeable: Whether the edge from this vertex to the next one
            lets the ambience through.
    """

    x: float
    y: float
    permeable: bool = False


class BoundingBox(NamedTuple):
    """Axis-aligned extent of a point set."""

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y


class NormalizedPolygon(NamedTuple):
    """Result of ``normalize``.

    Attributes:
        vertices: De-duplicated vertices re-based to the box origin.
        min_x: Offset that was subtracted from every x-coordinate.
        min_y: Offset that was subtracted from every y-coordinate.
        width: Width of the bounding box.
        height: Height of the bounding box.
    """

    vertices: list[Vertex]
    min_x: float
    min_y: float
    width: float
    height: float


# ---------------------------------------------------------------------------
# Primitive tests
# ---------------------------------------------------------------------------


def segments_intersect(p1: Point, p2: Point, q1: Point, q2: Point) -> bool:
    """Test whether segment ``p1-p2`` intersects segment ``q1-q2``.

    Solves the two parametric line equations.  Parallel and collinear
    segments are reported as non-intersecting, even when they overlap.
    Touching at an endpoint counts as an intersection.

    Args:
        p1: Start of the first segment.
        p2: End of the first segment.
        q1: Start of the second segment.
        q2: End of the second segment.

    Returns:
        True if both intersection parameters fall within ``[0, 1]``.
    """
    dx1 = p2[0] - p1[0]
    dy1 = p2[1] - p1[1]
    dx2 = q2[0] - q1[0]
    dy2 = q2[1] - q1[1]

    delta = dx2 * dy1 - dy2 * dx1
    if delta == 0:
        return False

    s = (dx1 * (q1[1] - p1[1]) + dy1 * (p1[0] - q1[0])) / delta
    t = (dx2 * (p1[1] - q1[1]) + dy2 * (q1[0] - p1[0])) / -delta
    return 0 <= s <= 1 and 0 <= t <= 1


def point_to_segment_distance(pt: Point, a: Point, b: Point) -> float:
    """Return the Euclidean distance from *pt* to the segment ``a-b``.

    The projection of *pt* onto the line through *a* and *b* is clamped
    to the segment, so points beyond either end measure against the
    nearest endpoint.

    Args:
        pt: The point to measure from.
        a: First endpoint of the segment.
        b: Second endpoint of the segment.

    Returns:
        The shortest distance between the point and the segment.
    """
    dx = b[0] - a[0]
    dy = b[1] - a[1]
    mag = dx * dx + dy * dy
    if mag == 0:
        return math.hypot(pt[0] - a[0], pt[1] - a[1])

    u = ((pt[0] - a[0]) * dx + (pt[1] - a[1]) * dy) / mag
    u = min(max(u, 0.0), 1.0)
    closest_x = a[0] + u * dx
    closest_y = a[1] + u * dy
    return math.hypot(pt[0] - closest_x, pt[1] - closest_y)


def project_onto_line(
    pt: Point,
    a: Point,
    b: Point,
    clamp: bool = False,
) -> tuple[float, float]:
    """Project *pt* onto the line through *a* and *b*.

    Args:
        pt: The point to project.
        a: Start of the line.
        b: End of the line.
        clamp: Keep the result on the segment ``a``-``b``.  By default
            the line is infinite.

    Returns:
        The projected ``(x, y)`` point, or *a* for a zero-length line.
    """
    dx = b[0] - a[0]
    dy = b[1] - a[1]
    mag = dx * dx + dy * dy
    if mag == 0:
        return (a[0], a[1])
    u = ((pt[0] - a[0]) * dx + (pt[1] - a[1]) * dy) / mag
    if clamp:
        u = min(max(u, 0.0), 1.0)
    return (a[0] + u * dx, a[1] + u * dy)


def point_in_polygon(pt: Point, vertices: Sequence[Point]) -> bool:
    """Even-odd ray casting test.

    Args:
        pt: The point to test, in the same space as *vertices*.
        vertices: Polygon corners in order.

    Returns:
        True if the point lies inside the polygon.
    """
    inside = False
    n = len(vertices)
    if n < 3:
        return False
    px, py = pt[0], pt[1]
    for i in range(n):
        xi, yi = vertices[i][0], vertices[i][1]
        xj, yj = vertices[i - 1][0], vertices[i - 1][1]
        if (yi > py) != (yj > py):
            if px < (xj - xi) * (py - yi) / (yj - yi) + xi:
                inside = not inside
    return inside


# ---------------------------------------------------------------------------
# Polygon validity
# ---------------------------------------------------------------------------


def is_simple_polygon(vertices: Sequence[Point], min_distance: float) -> bool:
    """Check that a closed polygon does not touch itself.

    Two rules are applied in order, returning on the first violation:

    1. For more than three vertices, no edge may intersect an edge that
       does not share a vertex with it.
    2. Every vertex keeps at least *min_distance* to every edge it is
       not an endpoint of.

    Fewer than three vertices have no non-incident edges and pass; the
    minimum vertex count is enforced by the zone record.

    Args:
        vertices: Polygon corners in order.  The last vertex connects
            back to the first.
        min_distance: Required clearance between a vertex and the
            non-incident edges.

    Returns:
        True if the polygon is simple and respects the clearance.
    """
    n = len(vertices)
    segments = [(vertices[i], vertices[(i + 1) % n]) for i in range(n)]

    if n > 3:
        for i in range(n):
            a1, a2 = segments[i]
            for offset in range(2, n - 1):
                b1, b2 = segments[(i + offset) % n]
                if segments_intersect(a1, a2, b1, b2):
                    return False

    for point_nr in range(n):
        left_neighbor = (point_nr - 1) % n
        for seg_nr in range(n):
            if seg_nr == point_nr or seg_nr == left_neighbor:
                continue
            a, b = segments[seg_nr]
            if point_to_segment_distance(vertices[point_nr], a, b) < min_distance:
                return False
    return True


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def _same_point(a: Point, b: Point) -> bool:
    return abs(a[0] - b[0]) <= EPSILON and abs(a[1] - b[1]) <= EPSILON


def dedupe_consecutive(vertices: Sequence[Vertex]) -> list[Vertex]:
    """Drop vertices that repeat their successor.

    Only applied to polygons with more than two vertices.  The trailing
    pair is always kept because the last vertex may be the one being
    drag-created from its predecessor.
    """
    items = list(vertices)
    if len(items) <= 2:
        return items
    kept = [v for i, v in enumerate(items[:-2]) if not _same_point(v, items[i + 1])]
    kept.extend(items[-2:])
    return kept


def bounding_box(points: Sequence[Point]) -> BoundingBox:
    """Return the tight axis-aligned box around *points*.

    Raises:
        ValueError: If *points* is empty.
    """
    if not points:
        raise ValueError("bounding_box requires at least one point")
    coords = np.asarray([(p[0], p[1]) for p in points], dtype=float)
    lo = coords.min(axis=0)
    hi = coords.max(axis=0)
    return BoundingBox(float(lo[0]), float(lo[1]), float(hi[0]), float(hi[1]))


def normalize(vertices: Sequence[Vertex]) -> NormalizedPolygon:
    """De-duplicate and re-base a vertex list to its bounding box origin.

    Applying ``normalize`` to its own output leaves it unchanged.

    Args:
        vertices: Polygon corners relative to some origin.

    Returns:
        A ``NormalizedPolygon`` whose vertices have a minimum coordinate
        of ``(0, 0)`` and whose offsets say how far the origin moved.
    """
    cleaned = dedupe_consecutive(vertices)
    box = bounding_box(cleaned)
    rebased = [
        v._replace(x=v.x - box.min_x, y=v.y - box.min_y) for v in cleaned
    ]
    return NormalizedPolygon(rebased, box.min_x, box.min_y, box.width, box.height)


# ---------------------------------------------------------------------------
# Rescaling
# ---------------------------------------------------------------------------


def rescale_points(
    points: Sequence[Point],
    source: tuple[float, float, float, float],
    target: tuple[float, float, float, float],
) -> list[tuple[float, float]]:
    """Map *points* from the *source* rectangle onto the *target* one.

    Both rectangles are ``(x, y, width, height)``.  A zero-sized source
    dimension collapses that axis onto the target's left or top edge.

    Returns:
        The rescaled points as ``(x, y)`` tuples.
    """
    if not points:
        return []
    coords = np.asarray([(p[0], p[1]) for p in points], dtype=float)
    src = np.asarray(source, dtype=float)
    dst = np.asarray(target, dtype=float)
    ratio = np.divide(dst[2:], src[2:], out=np.zeros(2), where=src[2:] != 0)
    mapped = dst[:2] + (coords - src[:2]) * ratio
    return [(float(x), float(y)) for x, y in mapped]
