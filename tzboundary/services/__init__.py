"""
Services package for the timezone builder.
Provides zone building, ocean filling, overlap validation, release diffing
and the end-to-end pipeline.
"""

from tzboundary.services.builder import ZoneBuilder, build_zones, dependency_waves
from tzboundary.services.diff import ReleaseDiffer, write_release_diff
from tzboundary.services.oceans import OceanFiller, select_bands
from tzboundary.services.pipeline import BuildPipeline
from tzboundary.services.validation import OverlapValidator

__all__ = [
    "BuildPipeline",
    "OceanFiller",
    "OverlapValidator",
    "ReleaseDiffer",
    "ZoneBuilder",
    "build_zones",
    "dependency_waves",
    "select_bands",
    "write_release_diff",
]
