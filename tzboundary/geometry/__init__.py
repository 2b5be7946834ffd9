"""
Geometry package for the timezone builder.
Provides robust boolean operations and zone post-processing using Shapely.
"""

from tzboundary.geometry.ops import GeometryOps

from tzboundary.geometry.utils import (
    BUFFER_DISTANCE,
    DIFF_AREA_THRESHOLD,
    MIN_HOLE_AREA,
    MIN_POLYGON_AREA,
    MINOR_OVERLAP_AREA,
    OVERLAP_AREA_THRESHOLD,
    PRECISION_GRID_SIZE,
    band_polygon,
    bounds_contain,
    bounds_overlap,
    extract_polygons,
    geodesic_area,
    geojson_to_geometry,
    geometry_to_geojson,
    post_process_zone,
    read_geojson,
    reduce_precision,
    write_geojson,
)

__all__ = [
    # Operations
    "GeometryOps",
    # Constants
    "BUFFER_DISTANCE",
    "DIFF_AREA_THRESHOLD",
    "MIN_HOLE_AREA",
    "MIN_POLYGON_AREA",
    "MINOR_OVERLAP_AREA",
    "OVERLAP_AREA_THRESHOLD",
    "PRECISION_GRID_SIZE",
    # Utils
    "band_polygon",
    "bounds_contain",
    "bounds_overlap",
    "extract_polygons",
    "geodesic_area",
    "geojson_to_geometry",
    "geometry_to_geojson",
    "post_process_zone",
    "read_geojson",
    "reduce_precision",
    "write_geojson",
]
