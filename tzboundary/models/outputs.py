"""
Output models for the timezone builder.
Zone results held in memory during a run and the reports produced by
validation and release diffing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, Field
from shapely.geometry.base import BaseGeometry

from tzboundary.models.inputs import ZoneVariant


@dataclass(frozen=True)
class ZoneResult:
    """The finished geometry of one zone. Written once, then read-only."""
    zone_id: str
    geometry: BaseGeometry
    variant: ZoneVariant = ZoneVariant.BASE

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return self.geometry.bounds


class OverlapDiagnostic(BaseModel):
    """An overlap between two zones not covered by any expected overlap."""
    zone_a: str = Field(..., description="First zone of the pair")
    zone_b: str = Field(..., description="Second zone of the pair")
    area: float = Field(..., description="Planar area of the intersection")
    unexpected_bounds: list[tuple[float, float, float, float]] = Field(
        default_factory=list,
        description="Bounds of each significant overlap polygon outside the allow-list",
    )
    debug_file: Optional[str] = Field(None, description="GeoJSON dump of the intersection")


class ValidationReport(BaseModel):
    """Outcome of the pairwise overlap check."""
    ok: bool = Field(True, description="True if no unexpected overlap was found")
    pairs_checked: int = Field(0, description="Number of zone pairs evaluated")
    diagnostics: list[OverlapDiagnostic] = Field(default_factory=list)


class DiffFeature(BaseModel):
    """An area added to or removed from a zone since the previous release."""
    tzid: str = Field(..., description="Zone id")
    geometry_geojson: dict[str, Any] = Field(..., description="GeoJSON geometry object")
    area: float = Field(..., description="Planar area of the change")
    properties: dict[str, Any] = Field(
        default_factory=dict,
        description="Extra feature properties, kept when a whole zone was removed",
    )

    def to_feature(self) -> dict[str, Any]:
        return {
            "type": "Feature",
            "properties": {**self.properties, "tzid": self.tzid},
            "geometry": self.geometry_geojson,
        }


class ReleaseDiff(BaseModel):
    """All additions and removals relative to the previous release."""
    additions: list[DiffFeature] = Field(default_factory=list)
    removals: list[DiffFeature] = Field(default_factory=list)
