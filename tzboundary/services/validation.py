"""
Pairwise overlap validation of built zones.

Every pair of land zones is checked. An overlap larger than the noise
threshold is only accepted if each of its significant pieces lies inside
one of the bounding boxes listed for that pair in the expected overlaps.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from shapely.geometry.base import BaseGeometry

from tzboundary.exceptions import TopologyFailure
from tzboundary.geometry.ops import GeometryOps
from tzboundary.geometry.utils import (
    MINOR_OVERLAP_AREA,
    OVERLAP_AREA_THRESHOLD,
    bounds_contain,
    bounds_overlap,
    extract_polygons,
    format_bounds,
    geodesic_area,
    write_geojson,
)
from tzboundary.models.inputs import ExpectedOverlapBounds, ExpectedOverlaps
from tzboundary.models.outputs import OverlapDiagnostic, ValidationReport
from tzboundary.progress import ProgressCallback, ProgressStats


logger = logging.getLogger(__name__)


def overlap_debug_filename(zone_a: str, zone_b: str) -> str:
    return f"{zone_a.replace('/', '-')}-{zone_b.replace('/', '-')}-overlap.json"


def unexpected_overlap_bounds(
    overlap: BaseGeometry,
    allowed: Optional[list[ExpectedOverlapBounds]],
) -> list[tuple[float, float, float, float]]:
    """
    Bounds of every significant overlap polygon that fits in none of the
    allowed boxes. Box containment only: a polygon passes when its bounding
    box lies inside an allowed box.
    """
    if not allowed:
        return [p.bounds for p in extract_polygons(overlap)] or [overlap.bounds]

    unexpected = []
    for polygon in extract_polygons(overlap):
        area = geodesic_area(polygon)
        if area <= MINOR_OVERLAP_AREA:
            continue
        bounds = polygon.bounds
        if not any(bounds_contain(a.bounds, bounds) for a in allowed):
            logger.error("Unexpected intersection (%.1f area) with bounds: %s", area, format_bounds(bounds))
            unexpected.append(bounds)
    return unexpected


class OverlapValidator:
    """
    Args:
        ops: Robust boolean operations
        expected_overlaps: Allow-list of tolerated overlaps
        debug_dir: Where overlap dumps are written
    """

    def __init__(
        self,
        ops: GeometryOps,
        expected_overlaps: Optional[ExpectedOverlaps] = None,
        debug_dir: Union[str, Path] = ".",
    ):
        self._ops = ops
        self.expected_overlaps = expected_overlaps or ExpectedOverlaps()
        self.debug_dir = Path(debug_dir)

    def check_pair(
        self, zone_a: str, geom_a: BaseGeometry, zone_b: str, geom_b: BaseGeometry
    ) -> Optional[OverlapDiagnostic]:
        """
        Check one pair of zones.

        Returns:
            A diagnostic if the pair overlaps unexpectedly, else None
        """
        if geom_a.is_empty or geom_b.is_empty or not bounds_overlap(geom_a.bounds, geom_b.bounds):
            return None

        try:
            intersects = self._ops.intersects(geom_a, geom_b, label=f"{zone_a}-{zone_b}")
        except TopologyFailure:
            logger.warning("warning, encountered intersection error with zone %s and %s", zone_a, zone_b)
            return None
        if not intersects:
            return None

        overlap = self._ops.intersection(geom_a, geom_b, label=f"{zone_a}-{zone_b}")
        area = overlap.area
        if area <= OVERLAP_AREA_THRESHOLD:
            return None

        unexpected = unexpected_overlap_bounds(overlap, self.expected_overlaps.for_pair(zone_a, zone_b))
        if not unexpected:
            return None

        logger.error("Validation error: %s intersects %s area: %s", zone_a, zone_b, area)
        self.debug_dir.mkdir(parents=True, exist_ok=True)
        debug_file = write_geojson(overlap, self.debug_dir / overlap_debug_filename(zone_a, zone_b))
        logger.error("wrote overlap area as file %s", debug_file)
        return OverlapDiagnostic(
            zone_a=zone_a,
            zone_b=zone_b,
            area=area,
            unexpected_bounds=unexpected,
            debug_file=str(debug_file),
        )

    def validate(
        self,
        zones: dict[str, BaseGeometry],
        progress_callback: ProgressCallback = None,
    ) -> ValidationReport:
        """
        Check all unordered pairs of zones. A failing pair never stops the
        scan; every failure is reported.

        Args:
            zones: tzid -> geometry in configuration order
            progress_callback: Optional callback for progress updates
        """
        zone_ids = list(zones)
        n = len(zone_ids)
        total_pairs = n * (n - 1) // 2
        progress = ProgressStats("Validation", total_pairs, progress_callback)
        logger.info("do validation... this may take a few minutes")

        report = ValidationReport()
        last_pct = 0
        for i in range(n):
            zone_a = zone_ids[i]
            for j in range(i + 1, n):
                cur_pct = int(progress.get_percentage())
                if cur_pct % 10 == 0 and cur_pct != last_pct:
                    progress.print_stats("Validating zones", True)
                    last_pct = cur_pct

                zone_b = zone_ids[j]
                diagnostic = self.check_pair(zone_a, zones[zone_a], zone_b, zones[zone_b])
                if diagnostic is not None:
                    report.diagnostics.append(diagnostic)
                    report.ok = False
                report.pairs_checked += 1
                progress.log_next()

        return report
