"""
Data loaders for the timezone builder.
Provides loading and caching of the JSON configuration, downloaded boundary
sources, built zone files and the previous release.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional

import geopandas as gpd
from shapely.geometry.base import BaseGeometry

from tzboundary.exceptions import InvalidRecipe, MissingSourceData
from tzboundary.geometry.utils import geojson_to_geometry
from tzboundary.models.inputs import (
    BoundarySourceQuery,
    ExpectedOverlaps,
    Operation,
    SourceKind,
    ZoneVariant,
    parse_boundary_sources,
    parse_expected_overlaps,
    parse_recipes,
)


logger = logging.getLogger(__name__)

ZONES_FILE = "timezones.json"
BOUNDARY_SOURCES_FILE = "osmBoundarySources.json"
EXPECTED_OVERLAPS_FILE = "expectedZoneOverlaps.json"
VARIANT_ZONES_FILES = {
    ZoneVariant.SINCE_1970: "timezones-1970.json",
    ZoneVariant.NOW: "timezones-now.json",
}


def zone_output_filename(tzid: str, variant: ZoneVariant = ZoneVariant.BASE) -> str:
    """File name of a built zone inside the working directory."""
    name = tzid.replace("/", "__")
    if variant != ZoneVariant.BASE:
        name = f"{name}.{variant.value}"
    return f"{name}.json"


def _read_json(path: Path) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise InvalidRecipe(f"{path}: {e}") from e


class DataService:
    """
    Service class for loading and accessing builder data.
    Provides cached access to configuration and downloaded sources.

    Args:
        config_dir: Directory holding timezones.json and friends
        downloads_dir: Directory holding downloaded boundary sources
    """

    def __init__(self, config_dir: Path, downloads_dir: Path):
        self.config_dir = Path(config_dir)
        self.downloads_dir = Path(downloads_dir)

        # Caches
        self._recipes: dict[ZoneVariant, dict[str, list[Operation]]] = {}
        self._boundary_sources: Optional[dict[str, BoundarySourceQuery]] = None
        self._expected_overlaps: Optional[ExpectedOverlaps] = None
        self._source_geometry_cache: dict[str, BaseGeometry] = {}
        self._source_geometry_lock = threading.Lock()

    def load_recipes(self, variant: ZoneVariant = ZoneVariant.BASE) -> dict[str, list[Operation]]:
        """
        Load the zone -> operations map of a variant, in configuration order.
        Variants other than base are optional and load as empty maps.
        """
        if variant in self._recipes:
            return self._recipes[variant]

        filename = ZONES_FILE if variant == ZoneVariant.BASE else VARIANT_ZONES_FILES[variant]
        path = self.config_dir / filename
        if path.exists():
            self._recipes[variant] = parse_recipes(_read_json(path))
        elif variant == ZoneVariant.BASE:
            raise InvalidRecipe(f"zone configuration not found: {path}")
        else:
            self._recipes[variant] = {}
        return self._recipes[variant]

    def load_boundary_sources(self) -> dict[str, BoundarySourceQuery]:
        if self._boundary_sources is None:
            path = self.config_dir / BOUNDARY_SOURCES_FILE
            raw = _read_json(path) if path.exists() else {}
            self._boundary_sources = parse_boundary_sources(raw)
        return self._boundary_sources

    def load_expected_overlaps(self) -> ExpectedOverlaps:
        if self._expected_overlaps is None:
            path = self.config_dir / EXPECTED_OVERLAPS_FILE
            raw = _read_json(path) if path.exists() else {}
            self._expected_overlaps = parse_expected_overlaps(raw)
        return self._expected_overlaps

    def source_path(self, query_id: str) -> Optional[Path]:
        """
        Path of a downloaded source, falling back to a manually fixed
        `<id>_fixed.json`. None if neither exists.
        """
        path = self.downloads_dir / f"{query_id}.json"
        if path.exists():
            return path
        fixed = self.downloads_dir / f"{query_id}_fixed.json"
        if fixed.exists():
            return fixed
        return None

    def get_source_geometry(self, query_id: str) -> BaseGeometry:
        """
        Geometry of a downloaded boundary source, parsed once per run.
        Safe to call from the zone-building worker threads.
        """
        with self._source_geometry_lock:
            if query_id in self._source_geometry_cache:
                return self._source_geometry_cache[query_id]

            path = self.source_path(query_id)
            if path is None:
                raise MissingSourceData(
                    f"No downloaded data for boundary source '{query_id}' in {self.downloads_dir}"
                )
            geom = geojson_to_geometry(_read_json(path))
            self._source_geometry_cache[query_id] = geom
            return geom

    def filter_recipes(
        self,
        recipes: dict[str, list[Operation]],
        included_zones: list[str],
        excluded_zones: list[str],
    ) -> dict[str, list[Operation]]:
        """Apply included/excluded zone filters, keeping configuration order."""
        filtered = recipes
        if included_zones:
            missing = [z for z in included_zones if z not in recipes]
            if missing:
                logger.warning("Included zones not in configuration: %s", ", ".join(missing))
            filtered = {z: ops for z, ops in filtered.items() if z in included_zones}
        if excluded_zones:
            filtered = {z: ops for z, ops in filtered.items() if z not in excluded_zones}
        return filtered


def used_boundary_sources(*recipe_maps: dict[str, list[Operation]]) -> list[str]:
    """Query ids referenced by fetched sources, in first-use order."""
    seen: dict[str, None] = {}
    for recipes in recipe_maps:
        for ops in recipes.values():
            for op in ops:
                if op.source.kind == SourceKind.FETCHED:
                    seen.setdefault(op.source.id, None)
    return list(seen)


def load_release_zones(path: Path) -> dict[str, BaseGeometry]:
    """
    Load a released combined GeoJSON file as tzid -> geometry.
    """
    gdf = gpd.read_file(path)
    if "tzid" not in gdf.columns:
        raise InvalidRecipe(f"{path} has no tzid property")
    gdf = gdf[gdf["geometry"].notnull()]
    return {str(row.tzid): row.geometry for row in gdf.itertuples()}


def load_release_properties(path: Path) -> dict[str, dict[str, Any]]:
    """Properties of every feature of a released combined GeoJSON file, by tzid."""
    data = _read_json(path)
    properties = {}
    for feature in data.get("features", []):
        props = feature.get("properties") or {}
        if "tzid" in props:
            properties[str(props["tzid"])] = dict(props)
    return properties
