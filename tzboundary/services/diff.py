"""
Geometric diff of the newly built zones against a previous release.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from shapely.geometry.base import BaseGeometry

from tzboundary.data.writers import FeatureWriterStream
from tzboundary.geometry.ops import GeometryOps
from tzboundary.geometry.utils import BUFFER_DISTANCE, DIFF_AREA_THRESHOLD, geometry_to_geojson
from tzboundary.models.outputs import DiffFeature, ReleaseDiff
from tzboundary.progress import ProgressCallback, ProgressStats


logger = logging.getLogger(__name__)


class ReleaseDiffer:
    """
    Args:
        ops: Robust boolean operations
    """

    def __init__(self, ops: GeometryOps):
        self._ops = ops

    def diff_zone(
        self, tzid: str, current: BaseGeometry, previous: BaseGeometry
    ) -> tuple[Optional[DiffFeature], Optional[DiffFeature]]:
        """
        Additions and removals of one zone present in both datasets.

        Both geometries are buffered by BUFFER_DISTANCE first so coordinate
        jitter between releases does not show up as slivers.
        """
        previous_buffered = previous.buffer(BUFFER_DISTANCE)
        current_buffered = current.buffer(BUFFER_DISTANCE)

        if current_buffered.equals(previous_buffered):
            return None, None

        addition = self._ops.difference(
            current_buffered, previous_buffered, buffer_after_precision_reduction=True, label=tzid
        )
        removal = self._ops.difference(
            previous_buffered, current_buffered, buffer_after_precision_reduction=True, label=tzid
        )
        return _significant(tzid, addition), _significant(tzid, removal)

    def diff(
        self,
        current_zones: dict[str, BaseGeometry],
        previous_zones: dict[str, BaseGeometry],
        progress_callback: ProgressCallback = None,
        previous_properties: Optional[dict[str, dict[str, Any]]] = None,
    ) -> ReleaseDiff:
        """
        Diff every zone in either dataset, in sorted zone id order.

        A zone missing from the new build is removed as its whole previous
        feature, carrying its `previous_properties` entry.
        """
        previous_properties = previous_properties or {}
        zone_names = sorted(set(current_zones) | set(previous_zones))
        progress = ProgressStats("Analyzing diffs", len(zone_names), progress_callback)
        result = ReleaseDiff()

        for tzid in zone_names:
            progress.begin_task(tzid, True)
            current = current_zones.get(tzid)
            previous = previous_zones.get(tzid)

            if current is not None and previous is not None:
                addition, removal = self.diff_zone(tzid, current, previous)
                if addition:
                    result.additions.append(addition)
                if removal:
                    result.removals.append(removal)
            elif current is not None:
                result.additions.append(
                    DiffFeature(tzid=tzid, geometry_geojson=geometry_to_geojson(current), area=current.area)
                )
            else:
                result.removals.append(
                    DiffFeature(
                        tzid=tzid,
                        geometry_geojson=geometry_to_geojson(previous),
                        area=previous.area,
                        properties=previous_properties.get(tzid, {}),
                    )
                )

        logger.info("%d additions, %d removals since last release", len(result.additions), len(result.removals))
        return result


def _significant(tzid: str, geom: BaseGeometry) -> Optional[DiffFeature]:
    area = geom.area
    if area <= DIFF_AREA_THRESHOLD:
        return None
    return DiffFeature(tzid=tzid, geometry_geojson=geometry_to_geojson(geom), area=area)


def write_release_diff(diff: ReleaseDiff, additions_path, removals_path) -> None:
    """Stream additions and removals to two FeatureCollection files."""
    with FeatureWriterStream(additions_path) as writer:
        for feature in diff.additions:
            writer.add(feature.to_feature())
    with FeatureWriterStream(removals_path) as writer:
        for feature in diff.removals:
            writer.add(feature.to_feature())
