"""
Ocean zones: the parts of each 15 degree longitude band not covered by any
land zone.
"""

from __future__ import annotations

import logging
from typing import Optional

from shapely.geometry.base import BaseGeometry

from tzboundary.geometry.ops import GeometryOps
from tzboundary.geometry.utils import band_polygon, post_process_zone
from tzboundary.models.inputs import OCEAN_BANDS, OceanBand
from tzboundary.models.outputs import ZoneResult
from tzboundary.progress import ProgressCallback, ProgressStats


logger = logging.getLogger(__name__)


class OceanFiller:
    """
    Args:
        ops: Robust boolean operations
        bands: Bands to fill (all 24 by default)
    """

    def __init__(self, ops: GeometryOps, bands: Optional[list[OceanBand]] = None):
        self._ops = ops
        self.bands = list(OCEAN_BANDS if bands is None else bands)

    def fill_band(self, band: OceanBand, land_zones: dict[str, BaseGeometry]) -> ZoneResult:
        """
        Subtract, in the given order, every land zone whose bounds reach into
        the band's longitude range.
        """
        geom = band_polygon(band.left, band.right)
        for tzid, land in land_zones.items():
            if land.is_empty:
                continue
            min_lon, _, max_lon, _ = land.bounds
            if max_lon < band.left or min_lon > band.right:
                continue
            geom = self._ops.difference(geom, land, label=band.tzid)
        return ZoneResult(zone_id=band.tzid, geometry=post_process_zone(geom))

    def fill(
        self,
        land_zones: dict[str, BaseGeometry],
        progress_callback: ProgressCallback = None,
    ) -> list[ZoneResult]:
        """
        Build one ocean zone per band.

        Args:
            land_zones: tzid -> geometry in configuration order
            progress_callback: Optional callback for progress updates

        Returns:
            Ocean ZoneResults in band order
        """
        logger.info("adding ocean boundaries")
        progress = ProgressStats("Oceans", len(self.bands), progress_callback)
        results = []
        for band in self.bands:
            progress.begin_task(band.tzid, True)
            results.append(self.fill_band(band, land_zones))
        return results


def select_bands(included_zones: list[str], excluded_zones: list[str]) -> list[OceanBand]:
    """Ocean bands that pass the included/excluded zone filters."""
    bands = OCEAN_BANDS
    if included_zones:
        bands = [b for b in bands if b.tzid in included_zones]
    if excluded_zones:
        bands = [b for b in bands if b.tzid not in excluded_zones]
    return list(bands)
