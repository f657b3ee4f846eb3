"""
Square mesh over a field polygon.

Coordinates are GeoJSON order (lng, lat). Fields are small, so the polygon is
projected to local metres with an equirectangular approximation around the
bounding-box centre; cells are laid out in that plane and projected back.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

METERS_PER_DEGREE_LAT = 111_320.0
MAX_MESH_CELLS = 200_000

Point = tuple[float, float]


class MeshError(ValueError):
    pass


@dataclass(frozen=True)
class MeshCell:
    cell_index: int
    row_index: int
    col_index: int
    geometry: dict
    center_lat: float
    center_lng: float
    area_sqm: float


def polygon_ring(geometry: Any) -> list[Point]:
    """Exterior ring of a GeoJSON Polygon (or a Feature wrapping one), closed."""
    if isinstance(geometry, dict) and geometry.get("type") == "Feature":
        geometry = geometry.get("geometry")
    if not isinstance(geometry, dict) or geometry.get("type") != "Polygon":
        raise MeshError("geometry must be a GeoJSON Polygon")
    coords = geometry.get("coordinates") or []
    if not coords or not isinstance(coords[0], list):
        raise MeshError("Polygon has no coordinates")
    try:
        ring = [(float(p[0]), float(p[1])) for p in coords[0]]
    except (TypeError, ValueError, IndexError) as e:
        raise MeshError("Polygon coordinates must be [lng, lat] pairs") from e
    if ring and ring[0] != ring[-1]:
        ring.append(ring[0])
    if len(ring) < 4:
        raise MeshError("Polygon needs at least three distinct points")
    return ring


def bbox(ring: list[Point]) -> tuple[float, float, float, float]:
    xs = [p[0] for p in ring]
    ys = [p[1] for p in ring]
    return min(xs), min(ys), max(xs), max(ys)


class LocalProjection:
    def __init__(self, origin_lng: float, origin_lat: float):
        self.origin_lng = origin_lng
        self.origin_lat = origin_lat
        self.m_per_deg_lng = METERS_PER_DEGREE_LAT * math.cos(math.radians(origin_lat))

    def to_xy(self, p: Point) -> Point:
        return (p[0] - self.origin_lng) * self.m_per_deg_lng, (p[1] - self.origin_lat) * METERS_PER_DEGREE_LAT

    def to_lnglat(self, x: float, y: float) -> Point:
        return self.origin_lng + x / self.m_per_deg_lng, self.origin_lat + y / METERS_PER_DEGREE_LAT


def ring_area(ring_xy: list[Point]) -> float:
    total = 0.0
    for (x1, y1), (x2, y2) in zip(ring_xy, ring_xy[1:]):
        total += x1 * y2 - x2 * y1
    return abs(total) / 2


def point_in_ring(p: Point, ring: list[Point]) -> bool:
    x, y = p
    inside = False
    for (x1, y1), (x2, y2) in zip(ring, ring[1:]):
        if (y1 > y) != (y2 > y):
            x_cross = x1 + (y - y1) * (x2 - x1) / (y2 - y1)
            if x < x_cross:
                inside = not inside
    return inside


def _orient(a: Point, b: Point, c: Point) -> float:
    return (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])


def _on_segment(a: Point, b: Point, p: Point) -> bool:
    return min(a[0], b[0]) <= p[0] <= max(a[0], b[0]) and min(a[1], b[1]) <= p[1] <= max(a[1], b[1])


def segments_intersect(a: Point, b: Point, c: Point, d: Point) -> bool:
    o1, o2, o3, o4 = _orient(a, b, c), _orient(a, b, d), _orient(c, d, a), _orient(c, d, b)
    if ((o1 > 0) != (o2 > 0)) and ((o3 > 0) != (o4 > 0)) and o1 and o2 and o3 and o4:
        return True
    if o1 == 0 and _on_segment(a, b, c):
        return True
    if o2 == 0 and _on_segment(a, b, d):
        return True
    if o3 == 0 and _on_segment(c, d, a):
        return True
    if o4 == 0 and _on_segment(c, d, b):
        return True
    return False


def square_intersects_ring(square: list[Point], ring: list[Point]) -> bool:
    """True when the closed square and the polygon share any area or boundary."""
    if any(point_in_ring(corner, ring) for corner in square[:-1]):
        return True
    if any(point_in_ring(vertex, square) for vertex in ring[:-1]):
        return True
    for a, b in zip(square, square[1:]):
        for c, d in zip(ring, ring[1:]):
            if segments_intersect(a, b, c, d):
                return True
    return False


def polygon_area_sqm(geometry: Any) -> float:
    ring = polygon_ring(geometry)
    min_lng, min_lat, max_lng, max_lat = bbox(ring)
    proj = LocalProjection((min_lng + max_lng) / 2, (min_lat + max_lat) / 2)
    return ring_area([proj.to_xy(p) for p in ring])


def generate_mesh(geometry: Any, cell_size: float = 5) -> list[MeshCell]:
    """
    Cells of `cell_size` metres covering the polygon's bounding box, keeping only the
    ones that touch the polygon. Row 0 is the southern edge, column 0 the western edge.
    """
    if cell_size <= 0:
        raise MeshError("mesh_size_meters must be positive")
    ring = polygon_ring(geometry)
    min_lng, min_lat, max_lng, max_lat = bbox(ring)
    proj = LocalProjection((min_lng + max_lng) / 2, (min_lat + max_lat) / 2)
    ring_xy = [proj.to_xy(p) for p in ring]
    min_x, min_y = proj.to_xy((min_lng, min_lat))
    max_x, max_y = proj.to_xy((max_lng, max_lat))

    cols = max(1, math.ceil((max_x - min_x) / cell_size))
    rows = max(1, math.ceil((max_y - min_y) / cell_size))
    if rows * cols > MAX_MESH_CELLS:
        raise MeshError(f"Mesh would have {rows * cols} cells; use a larger mesh size")

    cells: list[MeshCell] = []
    for row in range(rows):
        y0 = min_y + row * cell_size
        for col in range(cols):
            x0 = min_x + col * cell_size
            square = [
                (x0, y0),
                (x0 + cell_size, y0),
                (x0 + cell_size, y0 + cell_size),
                (x0, y0 + cell_size),
                (x0, y0),
            ]
            if not square_intersects_ring(square, ring_xy):
                continue
            corners = [proj.to_lnglat(x, y) for x, y in square]
            center_lng, center_lat = proj.to_lnglat(x0 + cell_size / 2, y0 + cell_size / 2)
            cells.append(
                MeshCell(
                    cell_index=len(cells),
                    row_index=row,
                    col_index=col,
                    geometry={"type": "Polygon", "coordinates": [[[lng, lat] for lng, lat in corners]]},
                    center_lat=center_lat,
                    center_lng=center_lng,
                    area_sqm=float(cell_size * cell_size),
                )
            )
    return cells
