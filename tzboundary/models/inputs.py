"""
Input models for the timezone builder.
All configuration records are validated using Pydantic for type safety and
consistency. The on-disk spelling follows timezones.json,
osmBoundarySources.json and expectedZoneOverlaps.json.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from tzboundary.exceptions import InvalidRecipe


class SourceKind(str, Enum):
    """Where an operation takes its geometry from."""
    FETCHED = "overpass"
    MANUAL_POLYGON = "manual-polygon"
    MANUAL_MULTIPOLYGON = "manual-multipolygon"
    DERIVED_ZONE = "final"


class OperationKind(str, Enum):
    """Boolean operation applied to the accumulated zone geometry."""
    INIT = "init"
    INTERSECT = "intersect"
    DIFFERENCE = "difference"
    DIFFERENCE_REVERSED = "difference-reverse-order"
    UNION = "union"


class ZoneVariant(str, Enum):
    """Zone sets built by a release. Variants may reference base zones."""
    BASE = "base"
    SINCE_1970 = "1970"
    NOW = "now"


class SourceRef(BaseModel):
    """A reference to the geometry an operation consumes."""
    kind: SourceKind = Field(..., alias="source", description="Type of source")
    id: Optional[str] = Field(None, description="Query id or zone id")
    data: Optional[list[Any]] = Field(None, description="GeoJSON coordinates for manual sources")
    variant: ZoneVariant = Field(ZoneVariant.BASE, description="Variant of a derived zone")

    model_config = {"populate_by_name": True, "frozen": True}

    @model_validator(mode="after")
    def check_payload(self) -> "SourceRef":
        if self.kind in (SourceKind.FETCHED, SourceKind.DERIVED_ZONE) and not self.id:
            raise ValueError(f"source '{self.kind.value}' requires an id")
        if self.kind in (SourceKind.MANUAL_POLYGON, SourceKind.MANUAL_MULTIPOLYGON) and not self.data:
            raise ValueError(f"source '{self.kind.value}' requires coordinate data")
        return self

    def describe(self) -> str:
        """Short label for log output."""
        if self.kind == SourceKind.DERIVED_ZONE and self.variant != ZoneVariant.BASE:
            return f"{self.kind.value}:{self.id}@{self.variant.value}"
        if self.id:
            return f"{self.kind.value}:{self.id}"
        return self.kind.value


class Operation(BaseModel):
    """One step in a zone recipe."""
    kind: OperationKind = Field(..., alias="op", description="Boolean operation")
    source: SourceRef = Field(..., description="Geometry consumed by the operation")

    model_config = {"populate_by_name": True, "frozen": True}

    @model_validator(mode="before")
    @classmethod
    def split_source(cls, data: Any) -> Any:
        # timezones.json stores the source fields inline with the op
        if isinstance(data, dict) and not isinstance(data.get("source"), (dict, SourceRef)):
            data = dict(data)
            op = data.pop("op", None)
            return {"op": op, "source": data}
        return data


class BoundarySourceQuery(BaseModel):
    """Overpass tag filter for one boundary source."""
    tags: dict[str, str] = Field(..., min_length=1, description="Tag key/value pairs")
    way: bool = Field(False, description="Query ways instead of relations")

    @classmethod
    def from_config(cls, raw: dict[str, Any]) -> "BoundarySourceQuery":
        tags = {k: str(v) for k, v in raw.items() if k != "way"}
        return cls(tags=tags, way=bool(raw.get("way", False)))


class ExpectedOverlapBounds(BaseModel):
    """A box inside which two zones are allowed to overlap."""
    bounds: tuple[float, float, float, float] = Field(
        ..., description="Bounding box [min_lon, min_lat, max_lon, max_lat]"
    )
    description: str = Field("", description="Why the overlap exists")

    @field_validator("bounds")
    @classmethod
    def validate_bounds(cls, v: tuple[float, float, float, float]) -> tuple[float, float, float, float]:
        if v[0] > v[2] or v[1] > v[3]:
            raise ValueError("bounds must be ordered [min_lon, min_lat, max_lon, max_lat]")
        return v


class ExpectedOverlaps(BaseModel):
    """Allow-list of overlaps keyed by "<zoneA>-<zoneB>"."""
    entries: dict[str, list[ExpectedOverlapBounds]] = Field(default_factory=dict)

    def for_pair(self, zone_a: str, zone_b: str) -> Optional[list[ExpectedOverlapBounds]]:
        """Look up the allowed overlaps for a pair, in either order."""
        return self.entries.get(f"{zone_a}-{zone_b}") or self.entries.get(f"{zone_b}-{zone_a}")


class OceanBand(BaseModel):
    """A synthetic international-waters zone between two longitudes."""
    tzid: str = Field(..., description="Etc/GMT zone id")
    left: float = Field(..., ge=-180, le=180, description="Western longitude")
    right: float = Field(..., ge=-180, le=180, description="Eastern longitude")

    @model_validator(mode="after")
    def check_order(self) -> "OceanBand":
        if self.left >= self.right:
            raise ValueError("band left longitude must be west of its right longitude")
        return self


OCEAN_BANDS: list[OceanBand] = [
    OceanBand(tzid="Etc/GMT-12", left=172.5, right=180),
    OceanBand(tzid="Etc/GMT-11", left=157.5, right=172.5),
    OceanBand(tzid="Etc/GMT-10", left=142.5, right=157.5),
    OceanBand(tzid="Etc/GMT-9", left=127.5, right=142.5),
    OceanBand(tzid="Etc/GMT-8", left=112.5, right=127.5),
    OceanBand(tzid="Etc/GMT-7", left=97.5, right=112.5),
    OceanBand(tzid="Etc/GMT-6", left=82.5, right=97.5),
    OceanBand(tzid="Etc/GMT-5", left=67.5, right=82.5),
    OceanBand(tzid="Etc/GMT-4", left=52.5, right=67.5),
    OceanBand(tzid="Etc/GMT-3", left=37.5, right=52.5),
    OceanBand(tzid="Etc/GMT-2", left=22.5, right=37.5),
    OceanBand(tzid="Etc/GMT-1", left=7.5, right=22.5),
    OceanBand(tzid="Etc/GMT", left=-7.5, right=7.5),
    OceanBand(tzid="Etc/GMT+1", left=-22.5, right=-7.5),
    OceanBand(tzid="Etc/GMT+2", left=-37.5, right=-22.5),
    OceanBand(tzid="Etc/GMT+3", left=-52.5, right=-37.5),
    OceanBand(tzid="Etc/GMT+4", left=-67.5, right=-52.5),
    OceanBand(tzid="Etc/GMT+5", left=-82.5, right=-67.5),
    OceanBand(tzid="Etc/GMT+6", left=-97.5, right=-82.5),
    OceanBand(tzid="Etc/GMT+7", left=-112.5, right=-97.5),
    OceanBand(tzid="Etc/GMT+8", left=-127.5, right=-112.5),
    OceanBand(tzid="Etc/GMT+9", left=-142.5, right=-127.5),
    OceanBand(tzid="Etc/GMT+10", left=-157.5, right=-142.5),
    OceanBand(tzid="Etc/GMT+11", left=-172.5, right=-157.5),
    OceanBand(tzid="Etc/GMT+12", left=-180, right=-172.5),
]


class BuildSettings(BaseModel):
    """Run configuration, usually filled in from the command line."""
    config_dir: Path = Field(Path("."), description="Directory holding the JSON configuration")
    downloads_dir: Path = Field(Path("./downloads"), description="Downloaded boundary sources")
    working_dir: Path = Field(Path("./working"), description="Intermediate and combined files")
    dist_dir: Path = Field(Path("./dist"), description="Release artifacts")
    diagnostics_dir: Optional[Path] = Field(None, description="Debug dumps (defaults to working_dir)")
    cache_file: Optional[Path] = Field(None, description="Zone build cache file")

    included_zones: list[str] = Field(default_factory=list, description="Only build these zones")
    excluded_zones: list[str] = Field(default_factory=list, description="Never build these zones")

    skip_download: bool = Field(False, description="Require all sources to be downloaded already")
    skip_validation: bool = Field(False, description="Skip the pairwise overlap check")
    skip_analyze_diffs: bool = Field(False, description="Skip the diff against the last release")
    skip_analyze_osm_tz_diffs: bool = Field(
        False, description="Skip downloading and merging the raw OSM timezone relations"
    )
    skip_shapefile: bool = Field(False, description="Skip shapefile creation")
    skip_zip: bool = Field(False, description="Skip zip creation")

    workers: int = Field(1, ge=1, description="Concurrent zone builds")
    overpass_url: str = Field(
        "https://overpass-api.de/api/interpreter",
        description="Endpoint returning GeoJSON for an Overpass query",
    )

    @property
    def debug_dir(self) -> Path:
        return self.diagnostics_dir or self.working_dir

    def zone_selected(self, zone_id: str) -> bool:
        """Whether a zone passes the included/excluded filters."""
        if self.included_zones and zone_id not in self.included_zones:
            return False
        return zone_id not in self.excluded_zones


def parse_recipe(zone_id: str, raw_ops: list[dict[str, Any]]) -> list[Operation]:
    """
    Parse one zone's list of operations from its JSON form.

    Raises:
        InvalidRecipe: on unknown op or source strings or missing fields
    """
    if not isinstance(raw_ops, list):
        raise InvalidRecipe(f"{zone_id}: recipe must be a list of operations")
    try:
        return [Operation.model_validate(raw) for raw in raw_ops]
    except ValidationError as e:
        raise InvalidRecipe(f"{zone_id}: {e}") from e


def parse_recipes(raw: dict[str, list[dict[str, Any]]]) -> dict[str, list[Operation]]:
    """Parse a whole zone -> operations map, preserving configuration order."""
    return {zone_id: parse_recipe(zone_id, ops) for zone_id, ops in raw.items()}


def parse_boundary_sources(raw: dict[str, dict[str, Any]]) -> dict[str, BoundarySourceQuery]:
    try:
        return {query_id: BoundarySourceQuery.from_config(cfg) for query_id, cfg in raw.items()}
    except ValidationError as e:
        raise InvalidRecipe(f"osmBoundarySources: {e}") from e


def parse_expected_overlaps(raw: dict[str, list[dict[str, Any]]]) -> ExpectedOverlaps:
    try:
        return ExpectedOverlaps(entries=raw)
    except ValidationError as e:
        raise InvalidRecipe(f"expectedZoneOverlaps: {e}") from e
