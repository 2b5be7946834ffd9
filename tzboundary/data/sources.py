"""
Resolution of recipe source references to geometries.
"""

from __future__ import annotations

import threading
from typing import Iterator

from shapely.errors import GEOSException
from shapely.geometry import shape
from shapely.geometry.base import BaseGeometry

from tzboundary.data.loaders import DataService
from tzboundary.exceptions import InvalidRecipe, UnresolvedDependency
from tzboundary.models.inputs import SourceKind, SourceRef, ZoneVariant
from tzboundary.models.outputs import ZoneResult


class ZoneStore:
    """
    Write-once map of (zone id, variant) -> ZoneResult.

    Each zone is written by exactly one builder invocation; every read
    happens after the wave that produced it.
    """

    def __init__(self):
        self._results: dict[tuple[str, ZoneVariant], ZoneResult] = {}
        self._lock = threading.Lock()

    def put(self, result: ZoneResult) -> None:
        key = (result.zone_id, result.variant)
        with self._lock:
            if key in self._results:
                raise InvalidRecipe(
                    f"zone {result.zone_id} ({result.variant.value}) was built twice"
                )
            self._results[key] = result

    def get(self, zone_id: str, variant: ZoneVariant = ZoneVariant.BASE) -> ZoneResult:
        try:
            return self._results[(zone_id, variant)]
        except KeyError:
            raise UnresolvedDependency(
                f"zone {zone_id} ({variant.value}) has not been built"
            ) from None

    def has(self, zone_id: str, variant: ZoneVariant = ZoneVariant.BASE) -> bool:
        return (zone_id, variant) in self._results

    def zones(self, variant: ZoneVariant = ZoneVariant.BASE) -> dict[str, BaseGeometry]:
        """zone id -> geometry for one variant, in insertion order."""
        return {z: r.geometry for (z, v), r in self._results.items() if v == variant}

    def __iter__(self) -> Iterator[ZoneResult]:
        return iter(list(self._results.values()))

    def __len__(self) -> int:
        return len(self._results)


class SourceResolver:
    """
    Maps a SourceRef to a geometry.

    Args:
        data_service: Access to downloaded boundary sources
        store: Already built zone results
    """

    def __init__(self, data_service: DataService, store: ZoneStore):
        self._data_service = data_service
        self._store = store

    def resolve(self, ref: SourceRef) -> BaseGeometry:
        """
        Raises:
            MissingSourceData: a fetched source was never downloaded
            UnresolvedDependency: a derived zone has no result yet
            InvalidRecipe: manual coordinates do not form a polygon
        """
        if ref.kind == SourceKind.FETCHED:
            return self._data_service.get_source_geometry(ref.id)
        if ref.kind == SourceKind.MANUAL_POLYGON:
            return _manual_geometry("Polygon", ref.data)
        if ref.kind == SourceKind.MANUAL_MULTIPOLYGON:
            return _manual_geometry("MultiPolygon", ref.data)
        if ref.kind == SourceKind.DERIVED_ZONE:
            return self._store.get(ref.id, ref.variant).geometry
        raise InvalidRecipe(f"unknown source: {ref.kind}")


def _manual_geometry(geom_type: str, coordinates) -> BaseGeometry:
    try:
        geom = shape({"type": geom_type, "coordinates": coordinates})
    except (GEOSException, ValueError, TypeError, IndexError) as e:
        raise InvalidRecipe(f"invalid {geom_type} coordinates: {e}") from e
    if geom.is_empty:
        raise InvalidRecipe(f"empty {geom_type} coordinates")
    return geom
