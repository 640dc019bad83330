"""Geometry helpers: CRS transforms and API polygon encoding."""

from __future__ import annotations

import math
from functools import lru_cache

import shapely
from pyproj import CRS, Transformer
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry

WGS84_EPSG = 4326


@lru_cache(maxsize=None)
def transformer_for(source_epsg: int, target_epsg: int) -> Transformer:
    return Transformer.from_crs(CRS.from_epsg(source_epsg), CRS.from_epsg(target_epsg), always_xy=True)


def reproject(geometry: BaseGeometry, source_epsg: int, target_epsg: int) -> BaseGeometry:
    if source_epsg == target_epsg:
        return geometry
    return shapely.transform(geometry, transformer_for(source_epsg, target_epsg).transform, interleaved=False)


def to_wgs84(geometry: BaseGeometry, source_epsg: int) -> BaseGeometry:
    return reproject(geometry, source_epsg, WGS84_EPSG)


def bounds_fit_crs(bounds: tuple[float, float, float, float], epsg: int) -> bool:
    """Cheap sanity check that an extent is expressed in the units of ``epsg``.

    Geographic CRSs must stay within +/-180 by +/-90. A projected extent that
    fits entirely inside that degree box is almost certainly lon/lat data
    declared under a metric CRS.
    """
    min_x, min_y, max_x, max_y = bounds
    in_degree_box = -180 <= min_x <= max_x <= 180 and -90 <= min_y <= max_y <= 90
    if CRS.from_epsg(int(epsg)).is_geographic:
        return in_degree_box
    return not in_degree_box


def largest_polygon(geometry: BaseGeometry) -> Polygon:
    if isinstance(geometry, Polygon):
        return geometry
    if isinstance(geometry, MultiPolygon):
        return max(geometry.geoms, key=lambda part: part.area)
    raise ValueError(f"Expected polygonal geometry, got {geometry.geom_type}")


def exterior_vertices(geometry: BaseGeometry) -> list[tuple[float, float]]:
    """Exterior ring of the largest polygon as ``(x, y)`` pairs, ring not closed."""
    coords = list(largest_polygon(geometry).exterior.coords)
    if len(coords) > 1 and coords[0] == coords[-1]:
        coords = coords[:-1]
    out: list[tuple[float, float]] = []
    for x, y, *_ in coords:
        if out and out[-1] == (x, y):
            continue
        out.append((x, y))
    return out


def sample_vertices(vertices: list[tuple[float, float]], limit: int) -> list[tuple[float, float]]:
    """Evenly spaced subsequence with stride ``ceil(count / limit)``."""
    if limit < 3:
        raise ValueError("Polygon vertex limit must be at least 3")
    if len(vertices) <= limit:
        return list(vertices)
    stride = math.ceil(len(vertices) / limit)
    return vertices[::stride]


def encode_api_polygon(vertices_lonlat: list[tuple[float, float]]) -> str:
    # Upstream expects lat,lon pairs joined by colons.
    return ":".join(f"{lat:.6f},{lon:.6f}" for lon, lat in vertices_lonlat)
