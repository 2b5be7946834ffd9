"""
Geometry utilities for the timezone builder.
Conversion between GeoJSON and Shapely, geodesic areas, precision snapping
and the post-processing applied to every finished zone.
"""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Union

import shapely
from pyproj import Geod
from shapely.geometry import MultiPolygon, Polygon, box, mapping, shape
from shapely.geometry.base import BaseGeometry


GEOD = Geod(ellps="WGS84")

# -----------------------------------------------------------------------------
# Global constants
# -----------------------------------------------------------------------------

# 6 decimal places of a degree
PRECISION_GRID_SIZE = 1e-6

# Outward buffer (degrees) used before diffing against a previous release
BUFFER_DISTANCE = 0.01

# Geodesic areas in square meters
MIN_POLYGON_AREA = 1.0
MIN_HOLE_AREA = 1.0
MINOR_OVERLAP_AREA = 10.0

# Planar areas in square degrees
OVERLAP_AREA_THRESHOLD = 0.0001
DIFF_AREA_THRESHOLD = 0.0001


def geojson_to_geometry(geojson: dict[str, Any]) -> BaseGeometry:
    """
    Convert a GeoJSON geometry (or Feature) dict to a Shapely geometry.

    Args:
        geojson: GeoJSON geometry, or a Feature wrapping one

    Returns:
        Shapely geometry
    """
    if geojson.get("type") == "Feature":
        geojson = geojson["geometry"]
    return shape(geojson)


def geometry_to_geojson(geometry: BaseGeometry) -> dict:
    """Convert a Shapely geometry to a GeoJSON dict."""
    return mapping(geometry)


def write_geojson(geometry: BaseGeometry, path: Union[str, Path]) -> Path:
    """Write a geometry as a standalone GeoJSON file."""
    path = Path(path)
    path.write_text(json.dumps(geometry_to_geojson(geometry)), encoding="utf-8")
    return path


def read_geojson(path: Union[str, Path]) -> BaseGeometry:
    """Read a standalone GeoJSON geometry file."""
    with open(path, "r", encoding="utf-8") as f:
        return geojson_to_geometry(json.load(f))


def reduce_precision(geometry: BaseGeometry) -> BaseGeometry:
    """Snap all coordinates to the fixed precision grid."""
    return shapely.set_precision(geometry, PRECISION_GRID_SIZE)


def ring_area(coords) -> float:
    """
    Geodesic area of a single linear ring in square meters.

    Args:
        coords: Sequence of (lon, lat) pairs

    Returns:
        Unsigned area on the WGS84 ellipsoid
    """
    area, _ = GEOD.geometry_area_perimeter(Polygon(coords))
    return abs(area)


def geodesic_area(geometry: BaseGeometry) -> float:
    """Geodesic area of a polygonal geometry in square meters (holes subtracted)."""
    if geometry.is_empty:
        return 0.0
    area, _ = GEOD.geometry_area_perimeter(geometry)
    return abs(area)


def bounds_overlap(
    a: tuple[float, float, float, float],
    b: tuple[float, float, float, float],
) -> bool:
    """Whether two (minx, miny, maxx, maxy) boxes touch or overlap."""
    return a[0] <= b[2] and b[0] <= a[2] and a[1] <= b[3] and b[1] <= a[3]


def bounds_contain(
    outer: tuple[float, float, float, float],
    inner: tuple[float, float, float, float],
) -> bool:
    """Whether box `outer` fully contains box `inner`."""
    return (
        outer[0] <= inner[0]
        and outer[1] <= inner[1]
        and outer[2] >= inner[2]
        and outer[3] >= inner[3]
    )


def format_bounds(bounds: tuple[float, float, float, float]) -> str:
    """Format bounds rounded outward to a tenth of a degree, for log messages."""
    return "[{}, {}, {}, {}]".format(
        math.floor(bounds[0] * 10) / 10,
        math.floor(bounds[1] * 10) / 10,
        math.ceil(bounds[2] * 10) / 10,
        math.ceil(bounds[3] * 10) / 10,
    )


def extract_polygons(geometry: BaseGeometry) -> list[Polygon]:
    """
    Decompose any geometry into its constituent simple polygons.

    Polygon, MultiPolygon and GeometryCollection are handled uniformly;
    points and lines are ignored.
    """
    if geometry.is_empty:
        return []
    if geometry.geom_type == "Polygon":
        return [geometry]
    if geometry.geom_type == "MultiPolygon":
        return list(geometry.geoms)
    if geometry.geom_type == "GeometryCollection":
        polygons = []
        for geom in geometry.geoms:
            polygons.extend(extract_polygons(geom))
        return polygons
    return []


def band_polygon(left: float, right: float) -> Polygon:
    """Rectangle spanning all latitudes between two longitudes."""
    return box(left, -90.0, right, 90.0)


def post_process_zone(geometry: BaseGeometry) -> BaseGeometry:
    """
    Post process a built timezone boundary.

    - snap coordinates to the precision grid
    - drop polygons smaller than MIN_POLYGON_AREA, keeping at least the
      largest one so the zone never loses its outer ring
    - drop holes no larger than MIN_HOLE_AREA

    Args:
        geometry: The raw result of a zone recipe

    Returns:
        Polygon or MultiPolygon
    """
    reduced = reduce_precision(geometry)
    polygons = extract_polygons(reduced)
    if not polygons:
        return reduced

    areas = [geodesic_area(p) for p in polygons]
    kept = [p for p, a in zip(polygons, areas) if a >= MIN_POLYGON_AREA]
    if not kept:
        kept = [polygons[areas.index(max(areas))]]

    filtered = []
    for polygon in kept:
        holes = [
            list(interior.coords)
            for interior in polygon.interiors
            if ring_area(interior.coords) > MIN_HOLE_AREA
        ]
        if len(holes) == len(polygon.interiors):
            filtered.append(polygon)
        else:
            filtered.append(Polygon(polygon.exterior.coords, holes))

    if len(filtered) == 1:
        return filtered[0]
    return MultiPolygon(filtered)
